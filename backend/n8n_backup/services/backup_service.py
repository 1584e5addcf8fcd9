# backend/n8n_backup/services/backup_service.py
"""
Snapshot engine entry points: capture, restore, rotate and status.

Capture commits the catalog row before the offsite upload and rotation run,
and neither of those can fail the capture. Capture, restore, rotate
and delete hold the workload lock for the configured container, so two of
them never run against the same workload at once, from any process.
"""
import os
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional
from uuid import UUID
from sqlalchemy.orm import Session

from n8n_backup.config import Settings, get_settings
from n8n_backup.exceptions import StreamError
from n8n_backup.models.backup import Backup, BackupKind
from n8n_backup.schemas.backup import ConnectionStatus
from n8n_backup.services.catalog_service import CatalogService
from n8n_backup.services.docker_service import DockerService
from n8n_backup.services.engines import get_engine
from n8n_backup.services.locks import workload_lock
from n8n_backup.services.log_service import LogService
from n8n_backup.services.retention_service import RetentionService
from n8n_backup.services.settings_service import S3Config, SettingsService
from n8n_backup.services.storage_service import StorageService

logger = logging.getLogger(__name__)


def backup_timestamp(now: Optional[datetime] = None) -> str:
    """UTC ISO-8601 timestamp safe for filenames: 2024-01-31T12-00-00-000Z."""
    now = now or datetime.now(timezone.utc)
    iso = now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"
    return iso.replace(":", "-").replace(".", "-")


class BackupService:
    """Orchestrates capture, restore and rotation for the configured workload."""

    def __init__(
        self,
        db: Session,
        docker_factory: Callable[[], DockerService],
        settings: Optional[Settings] = None,
        storage_factory: Optional[Callable[[S3Config, LogService], StorageService]] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.audit = LogService(db)
        self.config_store = SettingsService(db)
        self.catalog = CatalogService(db)
        self.retention = RetentionService(self.catalog, self.audit)
        self._docker_factory = docker_factory
        self._storage_factory = storage_factory or StorageService

    @property
    def backup_dir(self) -> Path:
        return Path(self.settings.backup_dir)

    def _ensure_backup_dir(self) -> None:
        if not self.backup_dir.exists():
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            self.audit.info(f"Created backup directory: {self.backup_dir}")

    # Capture

    def create_backup(self, kind: BackupKind = BackupKind.MANUAL) -> Backup:
        """
        Capture a snapshot of the workload database.

        Raises:
            ConfigurationError: db_type or container name unusable
            RuntimeUnavailable: the container could not be reached
            StreamError: local I/O failed mid-transfer
            CommandFailedError: pg_dump exited non-zero
            OperationInProgressError: another operation holds the workload
        """
        self.audit.info(f"Starting {kind.value} backup... (v{self.settings.app_version})")
        try:
            config = self.config_store.backup_config()
            with workload_lock(config.container_name):
                return self._create_backup_locked(config, kind)
        except Exception as e:
            self.audit.error(f"Backup failed: {e}")
            raise

    def _create_backup_locked(self, config, kind: BackupKind) -> Backup:
        self._ensure_backup_dir()
        self.audit.info(
            f"Container: {config.container_name}, DB Type: {config.db_type}, Backup Dir: {self.backup_dir}"
        )

        engine = get_engine(self._docker_factory(), config, self.audit)
        filename = engine.filename_for(backup_timestamp())
        filepath = str(self.backup_dir / filename)

        try:
            engine.capture(filepath)
            size = os.stat(filepath).st_size
        except OSError as e:
            self._discard_partial(filepath)
            raise StreamError(f"Failed to read back {filepath}: {e}") from e
        except Exception:
            self._discard_partial(filepath)
            raise

        self.audit.info(f"Backup created successfully: {filename}, Size: {size} bytes")
        backup = self.catalog.create(filename, filepath, size, kind)

        try:
            storage = self._storage_factory(self.config_store.s3_config(), self.audit)
            storage.upload_backup(filepath, filename)
        except Exception as e:
            self.audit.error(f"Failed to upload to S3: {e}")
        if config.retention_count > 0:
            self.retention.rotate_backups(config.retention_count)

        return backup

    def _discard_partial(self, filepath: str) -> None:
        try:
            if os.path.exists(filepath):
                os.remove(filepath)
        except OSError as e:
            logger.warning(f"Could not remove partial backup {filepath}: {e}")

    # Restore

    def restore_backup(self, backup_id: UUID) -> None:
        """
        Restore a stored snapshot into the workload container.

        The caller must make sure the workload is not writing to its database
        while this runs; nothing here pauses or stops the container.
        """
        try:
            backup = self.catalog.get(backup_id)
            config = self.config_store.backup_config()
            with workload_lock(config.container_name):
                if not os.path.exists(backup.storage_path):
                    raise StreamError(f"Backup file missing: {backup.storage_path}")
                self.audit.info(
                    f"Restoring {'PostgreSQL' if config.db_type == 'postgres' else 'SQLite'} backup: {backup.filename}"
                )
                get_engine(self._docker_factory(), config, self.audit).restore(backup.storage_path)
        except Exception as e:
            self.audit.error(f"Restore failed: {e}")
            raise
        self.audit.info("Restore completed successfully")

    # Catalog operations

    def list_backups(self) -> List[Backup]:
        return self.catalog.list()

    def get_backup_path(self, backup_id: UUID) -> str:
        return self.catalog.get_path(backup_id)

    def delete_backup(self, backup_id: UUID) -> None:
        backup = self.catalog.get(backup_id)
        filename = backup.filename
        with workload_lock(self.config_store.get("n8n_container_name")):
            self.catalog.remove(backup)
        self.audit.info(f"Deleted backup: {filename}")

    def register_uploaded_backup(self, filename: str, storage_path: str, size_bytes: int) -> Backup:
        backup = self.catalog.register_uploaded(filename, storage_path, size_bytes)
        self.audit.info(f"Registered uploaded backup: {filename}, Size: {size_bytes} bytes")
        return backup

    def toggle_backup_protection(self, backup_id: UUID, is_protected: bool) -> Backup:
        backup = self.catalog.set_protected(backup_id, is_protected)
        self.audit.info(
            f"Backup {backup.filename} protection {'enabled' if is_protected else 'disabled'}"
        )
        return backup

    def rotate_backups(self, limit: int) -> int:
        """Apply the retention policy now. Never raises for deletion failures."""
        container_name = self.config_store.get("n8n_container_name")
        with workload_lock(container_name):
            return self.retention.rotate_backups(limit)

    # Runtime status

    def check_connection_status(self) -> ConnectionStatus:
        """Target container running state and workload presence. Never raises."""
        status = ConnectionStatus()
        try:
            docker = self._docker_factory()
            status.database = docker.is_container_running(self.config_store.get("n8n_container_name"))
            status.n8n = docker.find_running_image(self.config_store.get("workload_image_match")) is not None
        except Exception as e:
            logger.error(f"Connection check failed: {e}")
        return status
