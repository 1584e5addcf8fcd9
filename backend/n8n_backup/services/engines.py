# backend/n8n_backup/services/engines.py
"""
Database-specific capture and restore drivers.

Each engine moves bytes between the workload container and local disk:

- PostgresEngine runs pg_dump / psql in an exec session. Credentials are
  passed as PGPASSWORD in the session environment, never on the command line.
- SqliteEngine copies the database file out with a raw archive download and
  back in with an archive upload over the live file.
"""
import io
import os
import time
import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional, Tuple

from docker.errors import DockerException
from requests.exceptions import RequestException

from n8n_backup.exceptions import CommandFailedError, RuntimeUnavailable, StreamError
from n8n_backup.services.docker_service import DockerService
from n8n_backup.services.log_service import LogService
from n8n_backup.services.settings_service import BackupConfig
from n8n_backup.services.stream_service import (
    build_single_file_tar,
    demux_stream,
    repack_single_file_tar,
    write_stream,
)

logger = logging.getLogger(__name__)

ERROR_MARKERS = ("FATAL", "ERROR")
RESTORE_TMP_DIR = "/tmp"


@contextmanager
def runtime_errors(action: str) -> Iterator[None]:
    """Translate Docker SDK and transport failures into RuntimeUnavailable."""
    try:
        yield
    except (DockerException, RequestException) as e:
        raise RuntimeUnavailable(f"{action} failed: {e}") from e


class BaseEngine:
    extension = ""

    def __init__(self, docker: DockerService, config: BackupConfig, audit: LogService):
        self.docker = docker
        self.config = config
        self.audit = audit

    def filename_for(self, timestamp: str) -> str:
        return f"backup-{timestamp}.{self.extension}"

    def capture(self, filepath: str) -> None:
        raise NotImplementedError

    def restore(self, filepath: str) -> None:
        raise NotImplementedError


class PostgresEngine(BaseEngine):
    extension = "sql"

    def _env(self) -> List[str]:
        return [f"PGPASSWORD={self.config.db_password}"] if self.config.db_password else []

    def _run(self, cmd: List[str], data_sink, diag_sink) -> Tuple[Optional[int], int, int]:
        with runtime_errors(f"{cmd[0]} in {self.config.container_name}"):
            exec_id, frames = self.docker.exec_stream(self.config.container_name, cmd, self._env())
            data_bytes, diag_bytes = demux_stream(frames, data_sink, diag_sink)
            exit_code = self.docker.exec_exit_code(exec_id)
        return exit_code, data_bytes, diag_bytes

    def _check_exit(self, command: str, exit_code: Optional[int], output: str) -> None:
        if exit_code == 0:
            return
        if exit_code is None:
            self.audit.warn(f"{command} exit status unavailable after its output ended")
        raise CommandFailedError(command, exit_code, output)

    def capture(self, filepath: str) -> None:
        cmd = [
            "pg_dump", "-U", self.config.db_user, "-d", self.config.db_name,
            "--clean", "--if-exists",
        ]
        self.audit.info(f"Creating PostgreSQL backup: {filepath}")

        diagnostics = io.BytesIO()
        try:
            with open(filepath, "wb") as out:
                exit_code, _, _ = self._run(cmd, out, diagnostics)
        except OSError as e:
            raise StreamError(f"Write stream error: {e}") from e

        stderr = diagnostics.getvalue().decode("utf-8", errors="replace").strip()
        if stderr:
            self.audit.warn(f"pg_dump output: {stderr}")
        self._check_exit("pg_dump", exit_code, stderr)

    def restore(self, filepath: str) -> None:
        temp_name = f"restore-{int(time.time() * 1000)}.sql"
        temp_path = f"{RESTORE_TMP_DIR}/{temp_name}"

        self.audit.info(f"Copying backup to container: {temp_path}")
        archive = build_single_file_tar(filepath, temp_name)
        with runtime_errors(f"Copy into {self.config.container_name}"):
            if not self.docker.put_archive(self.config.container_name, RESTORE_TMP_DIR, archive):
                raise RuntimeUnavailable(f"Container rejected archive for {RESTORE_TMP_DIR}")

        try:
            self.audit.info("Executing psql restore...")
            cmd = ["psql", "-U", self.config.db_user, "-d", self.config.db_name, "-f", temp_path]
            output = io.BytesIO()
            exit_code, _, _ = self._run(cmd, output, output)

            text = output.getvalue().decode("utf-8", errors="replace")
            if text.strip():
                self.audit.info(f"Restore output: {text[:200]}...")
            # psql keeps going past statement errors, so this is only a hint
            if any(marker in text for marker in ERROR_MARKERS):
                self.audit.warn("Potential errors detected in restore output.")
            self._check_exit("psql", exit_code, text)
        finally:
            self._cleanup(temp_path)

    def _cleanup(self, temp_path: str) -> None:
        try:
            self.docker.exec_detached(self.config.container_name, ["rm", "-f", temp_path])
        except Exception as e:
            logger.debug(f"Cleanup of {temp_path} failed: {e}")


class SqliteEngine(BaseEngine):
    extension = "tar"

    def capture(self, filepath: str) -> None:
        self.audit.info(f"Creating SQLite backup from {self.config.db_path} to {filepath}")
        with runtime_errors(f"Archive copy from {self.config.container_name}"):
            stream = self.docker.get_archive(self.config.container_name, self.config.db_path)
            write_stream(stream, filepath)

    def restore(self, filepath: str) -> None:
        db_dir = os.path.dirname(self.config.db_path) or "/"
        db_filename = os.path.basename(self.config.db_path)

        # The archive entry carries the live file's name so extraction overwrites it
        archive = repack_single_file_tar(filepath, db_filename)
        with runtime_errors(f"Copy into {self.config.container_name}"):
            if not self.docker.put_archive(self.config.container_name, db_dir, archive):
                raise RuntimeUnavailable(f"Container rejected archive for {db_dir}")


ENGINES = {
    "postgres": PostgresEngine,
    "sqlite": SqliteEngine,
}


def get_engine(docker: DockerService, config: BackupConfig, audit: LogService) -> BaseEngine:
    return ENGINES[config.db_type](docker, config, audit)
