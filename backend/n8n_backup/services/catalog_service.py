# backend/n8n_backup/services/catalog_service.py
import os
from uuid import UUID
from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import desc, func

from n8n_backup.exceptions import NotFoundError
from n8n_backup.models.backup import Backup, BackupKind


class CatalogService:
    """Sole writer of Backup rows. Callers refer to snapshots by id."""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        filename: str,
        storage_path: str,
        size_bytes: Optional[int],
        kind: BackupKind
    ) -> Backup:
        sequence = (self.db.query(func.max(Backup.sequence)).scalar() or 0) + 1
        backup = Backup(
            filename=filename,
            storage_path=storage_path,
            size_bytes=size_bytes,
            kind=kind,
            sequence=sequence,
        )
        self.db.add(backup)
        self.db.commit()
        self.db.refresh(backup)
        return backup

    def register_uploaded(self, filename: str, storage_path: str, size_bytes: int) -> Backup:
        return self.create(filename, storage_path, size_bytes, BackupKind.UPLOADED)

    def get(self, backup_id: UUID) -> Backup:
        backup = self.db.query(Backup).filter(Backup.id == backup_id).first()
        if backup is None:
            raise NotFoundError(f"Backup not found: {backup_id}")
        return backup

    def get_path(self, backup_id: UUID) -> str:
        return self.get(backup_id).storage_path

    def list(self) -> List[Backup]:
        """All snapshots, newest first."""
        return self.db.query(Backup).order_by(
            desc(Backup.created_at), desc(Backup.sequence)
        ).all()

    def set_protected(self, backup_id: UUID, is_protected: bool) -> Backup:
        backup = self.get(backup_id)
        backup.is_protected = is_protected
        self.db.commit()
        self.db.refresh(backup)
        return backup

    def remove(self, backup: Backup) -> None:
        """Remove the snapshot file if present, then its row."""
        if os.path.exists(backup.storage_path):
            os.remove(backup.storage_path)
        self.db.delete(backup)
        self.db.commit()

    def delete(self, backup_id: UUID) -> None:
        self.remove(self.get(backup_id))
