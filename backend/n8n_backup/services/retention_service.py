# backend/n8n_backup/services/retention_service.py
from typing import List

from n8n_backup.models.backup import Backup
from n8n_backup.services.catalog_service import CatalogService
from n8n_backup.services.log_service import LogService


def select_expired(backups: List[Backup], limit: int) -> List[Backup]:
    """
    Unprotected backups beyond the `limit` most recent unprotected ones.

    `backups` must be ordered newest first. Protected backups are never
    returned, whatever their age.
    """
    if limit <= 0:
        return []
    unprotected = [b for b in backups if not b.is_protected]
    return unprotected[limit:]


class RetentionService:
    """Keep-N-unprotected rotation over the snapshot catalog."""

    def __init__(self, catalog: CatalogService, audit: LogService):
        self.catalog = catalog
        self.audit = audit

    def rotate_backups(self, limit: int) -> int:
        """
        Delete expired backups. Never raises.

        Returns:
            Number of backups actually removed
        """
        if not limit or limit <= 0:
            return 0

        try:
            to_delete = select_expired(self.catalog.list(), limit)
        except Exception as e:
            self.audit.error(f"Backup rotation failed: {e}")
            return 0

        if not to_delete:
            return 0

        self.audit.info(
            f"Rotating backups: Deleting {len(to_delete)} old backups (Limit: {limit})"
        )
        removed = 0
        for backup in to_delete:
            filename = backup.filename
            try:
                self.catalog.remove(backup)
                removed += 1
                self.audit.info(f"Deleted old backup: {filename}")
            except Exception as e:
                self.catalog.db.rollback()
                self.audit.error(f"Failed to delete old backup {filename}: {e}")
        return removed
