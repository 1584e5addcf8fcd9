# backend/n8n_backup/services/update_service.py
"""
Self-update state machine.

    idle -> checking -> available | idle
    available -> downloading -> backing_up -> applying -> restart_required | error
    idle -> rolling_back -> restart_required | error

Before an update archive is extracted over the installation, the critical
installation paths are archived into the history directory as
``backup_v<version>_<epochMillis>.zip`` with a ``.json`` sidecar holding the
same version and timestamp. Rollback extracts the newest of those.

The service never stops the process. Once files have been replaced it sits
in ``restart_required`` until an external supervisor restarts it. A check
running concurrently with apply or rollback never moves the state; only the
mutating operation does, and nothing leaves ``restart_required``.
"""
import json
import logging
import os
import re
import threading
import time
import zipfile
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Callable, List, Optional

import requests
from pydantic import ValidationError

from n8n_backup.config import Settings, get_settings
from n8n_backup.exceptions import (
    NoUpdateAvailableError,
    NotFoundError,
    OperationInProgressError,
    StreamError,
    UntrustedSourceError,
)
from n8n_backup.schemas.update import UpdateCheck, UpdateManifest, UpdateRecord, UpdateResult
from n8n_backup.services.locks import SELF_UPDATE_LOCK, workload_lock
from n8n_backup.services.update_validator import (
    compare_versions,
    is_valid_download_url,
    is_valid_version_format,
)

logger = logging.getLogger(__name__)

HISTORY_PREFIX = "backup_v"
HISTORY_EXTENSION = ".zip"
HISTORY_PATTERN = re.compile(r"^backup_v(.+)_(\d+)\.zip$")
TEMP_UPDATE_NAME = "temp_update.zip"
DOWNLOAD_CHUNK_SIZE = 64 * 1024


class UpdateState(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"
    AVAILABLE = "available"
    DOWNLOADING = "downloading"
    BACKING_UP = "backing_up"
    APPLYING = "applying"
    ROLLING_BACK = "rolling_back"
    RESTART_REQUIRED = "restart_required"
    ERROR = "error"


def history_filename(version: str, timestamp_ms: int) -> str:
    return f"{HISTORY_PREFIX}{version}_{timestamp_ms}{HISTORY_EXTENSION}"


def validate_archive_members(archive: zipfile.ZipFile, root: Path) -> None:
    """Reject any member that would be written outside root."""
    resolved_root = root.resolve()
    for name in archive.namelist():
        pure = PurePosixPath(name.replace("\\", "/"))
        if pure.is_absolute() or ".." in pure.parts:
            raise UntrustedSourceError(f"Archive member escapes installation root: {name}")
        target = (resolved_root / pure).resolve()
        if target != resolved_root and resolved_root not in target.parents:
            raise UntrustedSourceError(f"Archive member escapes installation root: {name}")


class UpdateService:
    """Checks for, applies and rolls back updates of this installation."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or get_settings()
        self.http = http or requests.Session()
        self.clock = clock
        self.state = UpdateState.IDLE
        self.last_error: Optional[str] = None
        self._state_lock = threading.Lock()
        self._mutating = False

    @property
    def current_version(self) -> str:
        return self.settings.app_version

    @property
    def install_root(self) -> Path:
        return Path(self.settings.install_root)

    @property
    def history_dir(self) -> Path:
        return Path(self.settings.update_history_dir)

    # Check

    def fetch_manifest(self) -> UpdateManifest:
        url = self.settings.update_manifest_url
        logger.info(f"Checking for updates from: {url}")
        try:
            response = self.http.get(url)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            raise StreamError(f"Failed to fetch update info: {e}") from e

        try:
            manifest = UpdateManifest.model_validate(payload)
        except ValidationError as e:
            raise UntrustedSourceError(
                "Invalid version.json: missing required fields (version, downloadUrl)"
            ) from e

        if not is_valid_version_format(manifest.version):
            raise UntrustedSourceError(f"Invalid version in version.json: {manifest.version!r}")
        if not is_valid_download_url(manifest.download_url, self.settings.trusted_update_origin):
            raise UntrustedSourceError(
                "Security violation: Invalid download URL in version.json. "
                f"Must start with: {self.settings.trusted_update_origin}"
            )
        return manifest

    def _set_state(self, state: UpdateState, mutation: bool = False) -> bool:
        """
        Move to state unless the transition is not allowed.

        Nothing leaves RESTART_REQUIRED, and while apply or rollback runs only
        they (mutation=True) may change the state.
        """
        with self._state_lock:
            if self.state == UpdateState.RESTART_REQUIRED:
                return False
            if self._mutating and not mutation:
                return False
            self.state = state
            return True

    def _begin_mutation(self) -> None:
        with self._state_lock:
            if self.state == UpdateState.RESTART_REQUIRED:
                raise OperationInProgressError("A restart is pending to finish a previous update")
            self._mutating = True

    def _end_mutation(self) -> None:
        with self._state_lock:
            self._mutating = False

    def _restart_pending_check(self) -> UpdateCheck:
        return UpdateCheck(
            has_update=False,
            current_version=self.current_version,
            message="Restart pending to finish a previous update",
        )

    def _evaluate(self, mutation: bool = False) -> UpdateCheck:
        self._set_state(UpdateState.CHECKING, mutation)
        manifest = self.fetch_manifest()

        if compare_versions(self.current_version, manifest.version) > 0:
            self._set_state(UpdateState.AVAILABLE, mutation)
            return UpdateCheck(
                has_update=True,
                current_version=self.current_version,
                remote_version=manifest.version,
                download_url=manifest.download_url,
                release_notes=manifest.release_notes,
                release_date=manifest.release_date,
                changelog=manifest.changelog,
            )

        self._set_state(UpdateState.IDLE, mutation)
        return UpdateCheck(
            has_update=False,
            current_version=self.current_version,
            remote_version=manifest.version,
            message="You are running the latest version",
        )

    def check_for_updates(self) -> UpdateCheck:
        """Compare the remote manifest with the running version. Never raises."""
        if self.state == UpdateState.RESTART_REQUIRED:
            return self._restart_pending_check()
        try:
            check = self._evaluate()
        except Exception as e:
            logger.error(f"Update check failed: {e}")
            self._set_state(UpdateState.IDLE)
            return UpdateCheck(
                has_update=False,
                current_version=self.current_version,
                error=str(e),
            )
        # An apply may have finished while the manifest was being fetched
        if self.state == UpdateState.RESTART_REQUIRED:
            return self._restart_pending_check()
        return check

    # Apply

    def download_update(self, download_url: str) -> Path:
        """Stream the update asset to a temporary file under the install root."""
        if not is_valid_download_url(download_url, self.settings.trusted_update_origin):
            raise UntrustedSourceError("Security violation: Cannot download - URL validation failed")

        logger.info(f"Downloading update from: {download_url}")
        temp_path = self.install_root / TEMP_UPDATE_NAME
        try:
            with self.http.get(download_url, stream=True) as response:
                response.raise_for_status()
                with open(temp_path, "wb") as f:
                    for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
        except (requests.RequestException, OSError) as e:
            self._remove_quietly(temp_path)
            raise StreamError(f"Failed to download update: {e}") from e

        logger.info("Update downloaded successfully")
        return temp_path

    def create_pre_update_backup(self) -> Path:
        """Archive the critical installation paths into the history directory."""
        self.history_dir.mkdir(parents=True, exist_ok=True)
        timestamp_ms = int(self.clock() * 1000)
        backup_name = history_filename(self.current_version, timestamp_ms)
        backup_path = self.history_dir / backup_name
        history_dir = self.history_dir.resolve()

        files: List[str] = []
        try:
            with zipfile.ZipFile(backup_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
                for relative in self.settings.update_backup_paths:
                    full_path = self.install_root / relative
                    if full_path.is_dir():
                        for path in sorted(full_path.rglob("*")):
                            if path.is_file() and history_dir not in path.resolve().parents:
                                arcname = path.relative_to(self.install_root).as_posix()
                                archive.write(path, arcname)
                                files.append(arcname)
                    elif full_path.is_file():
                        archive.write(full_path, PurePosixPath(relative).as_posix())
                        files.append(PurePosixPath(relative).as_posix())

            sidecar = backup_path.with_suffix(".json")
            sidecar.write_text(json.dumps({
                "version": self.current_version,
                "timestamp": timestamp_ms,
                "files": files,
            }, indent=2))
        except OSError as e:
            self._remove_quietly(backup_path)
            raise StreamError(f"Backup creation failed: {e}") from e

        logger.info(f"Pre-update backup created: {backup_name}")
        return backup_path

    def _extract_over_install(self, archive_path: Path) -> None:
        try:
            with zipfile.ZipFile(archive_path) as archive:
                validate_archive_members(archive, self.install_root)
                archive.extractall(self.install_root)
        except zipfile.BadZipFile as e:
            raise UntrustedSourceError(f"Not a valid update archive: {archive_path.name}") from e
        except OSError as e:
            raise StreamError(f"Failed to extract {archive_path.name}: {e}") from e

    def _verify_archive(self, archive_path: Path) -> None:
        try:
            with zipfile.ZipFile(archive_path) as archive:
                validate_archive_members(archive, self.install_root)
        except zipfile.BadZipFile as e:
            raise UntrustedSourceError(f"Not a valid update archive: {archive_path.name}") from e

    def apply_update(self) -> UpdateResult:
        """
        Download, self-snapshot and extract the available update.

        Raises:
            NoUpdateAvailableError: running version is current; nothing is touched
            UntrustedSourceError: manifest, URL or archive failed validation
            StreamError: download, archive or extraction I/O failed
            OperationInProgressError: a restart is pending, or another apply
                or rollback is running
        """
        with workload_lock(SELF_UPDATE_LOCK):
            self._begin_mutation()
            try:
                remote_version = self._apply_locked()
            finally:
                self._end_mutation()
        return UpdateResult(
            success=True,
            message=f"Update {remote_version} applied. Restart required.",
            restart_required=True,
        )

    def _apply_locked(self) -> str:
        temp_path: Optional[Path] = None
        try:
            # Re-check so a stale "available" never drives a mutation
            check = self._evaluate(mutation=True)
            if not check.has_update:
                raise NoUpdateAvailableError("No updates available")

            self._set_state(UpdateState.DOWNLOADING, mutation=True)
            temp_path = self.download_update(check.download_url)
            self._verify_archive(temp_path)

            self._set_state(UpdateState.BACKING_UP, mutation=True)
            self.create_pre_update_backup()

            logger.info("Applying update...")
            self._set_state(UpdateState.APPLYING, mutation=True)
            self._extract_over_install(temp_path)
            logger.info("Update extracted successfully.")
        except NoUpdateAvailableError as e:
            self._set_state(UpdateState.IDLE, mutation=True)
            logger.error(f"Apply update failed: {e}")
            raise
        except Exception as e:
            self._set_state(UpdateState.ERROR, mutation=True)
            self.last_error = str(e)
            logger.error(f"Apply update failed: {e}")
            raise
        finally:
            if temp_path is not None:
                self._remove_quietly(temp_path)

        self._set_state(UpdateState.RESTART_REQUIRED, mutation=True)
        return check.remote_version

    # Rollback

    def rollback(self) -> UpdateResult:
        """
        Extract the newest pre-update backup over the installation.

        Raises:
            NotFoundError: there is no pre-update backup; nothing is touched
        """
        with workload_lock(SELF_UPDATE_LOCK):
            self._begin_mutation()
            try:
                version = self._rollback_locked()
            finally:
                self._end_mutation()
        return UpdateResult(
            success=True,
            message=f"Rolled back to v{version}. Restart required.",
            restart_required=True,
        )

    def _rollback_locked(self) -> str:
        try:
            history = self.get_update_history()
            if not history:
                raise NotFoundError("No backups available for rollback")

            latest = history[0]
            logger.info(f"Rolling back to: {latest.filename}")
            self._set_state(UpdateState.ROLLING_BACK, mutation=True)
            self._extract_over_install(self.history_dir / latest.filename)
        except NotFoundError as e:
            logger.error(f"Rollback failed: {e}")
            raise
        except Exception as e:
            self._set_state(UpdateState.ERROR, mutation=True)
            self.last_error = str(e)
            logger.error(f"Rollback failed: {e}")
            raise

        self._set_state(UpdateState.RESTART_REQUIRED, mutation=True)
        return latest.version

    # History

    def _read_sidecar(self, archive_path: Path) -> Optional[dict]:
        sidecar = archive_path.with_suffix(".json")
        if not sidecar.is_file():
            return None
        try:
            data = json.loads(sidecar.read_text())
            return {"version": str(data["version"]), "timestamp": int(data["timestamp"])}
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable sidecar {sidecar.name}: {e}")
            return None

    def get_update_history(self) -> List[UpdateRecord]:
        """Pre-update backups, newest first by embedded timestamp."""
        if not self.history_dir.is_dir():
            return []

        records = []
        for path in self.history_dir.iterdir():
            name = path.name
            if not (name.startswith(HISTORY_PREFIX) and name.endswith(HISTORY_EXTENSION)):
                continue
            stats = path.stat()
            meta = self._read_sidecar(path)
            if meta is None:
                match = HISTORY_PATTERN.match(name)
                meta = {
                    "version": match.group(1) if match else "unknown",
                    "timestamp": int(match.group(2)) if match else int(stats.st_mtime * 1000),
                }
            records.append(UpdateRecord(
                filename=name,
                version=meta["version"],
                timestamp=meta["timestamp"],
                size=stats.st_size,
                date=datetime.fromtimestamp(stats.st_mtime, tz=timezone.utc),
            ))

        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records

    def _remove_quietly(self, path: Path) -> None:
        try:
            if path.exists():
                os.remove(path)
        except OSError as e:
            logger.warning(f"Could not remove {path}: {e}")


# Singleton instance, so state survives between requests
_update_service: Optional[UpdateService] = None


def get_update_service() -> UpdateService:
    """Get the update service singleton."""
    global _update_service
    if _update_service is None:
        _update_service = UpdateService()
    return _update_service
