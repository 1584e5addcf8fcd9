# n8n_backup/services/docker_service.py
"""
Docker runtime adapter for the snapshot engine.

Exposes only the calls the engine needs against the workload container:
inspect, listing running containers, exec sessions with demultiplexed
output, and archive download/upload. Errors from the Docker SDK
are logged and re-raised unchanged; the engine translates them.
"""
import docker
from docker.errors import APIError, NotFound
from typing import Optional, Dict, List, Any, Iterator, Tuple
import logging

from n8n_backup.exceptions import RuntimeUnavailable

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class DockerService:
    """Service for talking to the Docker daemon on behalf of the engine."""

    def __init__(self, client: Optional[docker.DockerClient] = None):
        self.client = client or docker.from_env()
        self._verify_connection()

    def _verify_connection(self) -> None:
        """Verify connection to Docker daemon."""
        try:
            self.client.ping()
            logger.info("Connected to Docker daemon")
        except Exception as e:
            logger.error(f"Failed to connect to Docker daemon: {e}")
            raise RuntimeUnavailable("Cannot connect to Docker daemon") from e

    # Inspection

    def inspect(self, name: str) -> Dict[str, Any]:
        """Inspect a container. Raises docker.errors.NotFound if absent."""
        return self.client.api.inspect_container(name)

    def is_container_running(self, name: str) -> bool:
        """Running state of a container; any failure reads as not running."""
        try:
            info = self.inspect(name)
            return bool(info.get("State", {}).get("Running", False))
        except Exception as e:
            logger.debug(f"Inspect of {name} failed: {e}")
            return False

    def list_running(self) -> List[Dict[str, Any]]:
        """List running containers as {id, name, image} dicts."""
        containers = self.client.api.containers()
        return [
            {
                "id": c.get("Id"),
                "name": (c.get("Names") or [""])[0].lstrip("/"),
                "image": c.get("Image", ""),
            }
            for c in containers
        ]

    def find_running_image(self, substring: str) -> Optional[Dict[str, Any]]:
        """First running container whose image reference contains substring."""
        for container in self.list_running():
            if substring in container["image"]:
                return container
        return None

    # Exec sessions

    def exec_stream(
        self,
        container: str,
        cmd: List[str],
        environment: Optional[List[str]] = None
    ) -> Tuple[str, Iterator[Tuple[Optional[bytes], Optional[bytes]]]]:
        """
        Start a command inside a container without a TTY.

        Args:
            container: Container name or ID
            cmd: Command and arguments
            environment: ["KEY=value", ...] passed to the exec session only

        Returns:
            Tuple of (exec_id, frames) where frames yields (stdout, stderr)
            tuples in arrival order, as demultiplexed by the SDK.
        """
        try:
            exec_id = self.client.api.exec_create(
                container,
                cmd,
                stdout=True,
                stderr=True,
                tty=False,
                environment=environment or None,
            )["Id"]
            frames = self.client.api.exec_start(exec_id, stream=True, demux=True)
        except (NotFound, APIError) as e:
            logger.error(f"Failed to exec in container {container}: {e}")
            raise
        logger.debug(f"Started exec {exec_id[:12]} in {container}: {cmd[0]}")
        return exec_id, frames

    def exec_exit_code(self, exec_id: str) -> Optional[int]:
        """Exit code of a finished exec session, None if still running."""
        return self.client.api.exec_inspect(exec_id).get("ExitCode")

    def exec_detached(self, container: str, cmd: List[str]) -> None:
        """Start a command and return immediately without reading its output."""
        exec_id = self.client.api.exec_create(container, cmd, stdout=False, stderr=False)["Id"]
        self.client.api.exec_start(exec_id, detach=True)

    # Archive transfer

    def get_archive(self, container: str, path: str) -> Iterator[bytes]:
        """Stream a tar archive of path from inside the container."""
        try:
            stream, stat = self.client.api.get_archive(container, path, chunk_size=CHUNK_SIZE)
        except (NotFound, APIError) as e:
            logger.error(f"Failed to get archive {container}:{path}: {e}")
            raise
        logger.info(f"Fetching {container}:{path} ({stat.get('size', '?')} bytes)")
        return stream

    def put_archive(self, container: str, path: str, data) -> bool:
        """Extract a tar archive into path inside the container."""
        try:
            result = self.client.api.put_archive(container, path, data)
            logger.info(f"Copied archive to {container}:{path}")
            return result
        except (NotFound, APIError) as e:
            logger.error(f"Failed to copy archive to container: {e}")
            raise


# Singleton instance
_docker_service: Optional[DockerService] = None


def get_docker_service() -> DockerService:
    """Get the Docker service singleton."""
    global _docker_service
    if _docker_service is None:
        _docker_service = DockerService()
    return _docker_service
