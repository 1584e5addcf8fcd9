# backend/n8n_backup/models/backup.py
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from sqlalchemy import BigInteger, Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from n8n_backup.models.base import Base, TimestampMixin, UUIDMixin


class BackupKind(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    UPLOADED = "uploaded"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Backup(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "backups"

    filename: Mapped[str] = mapped_column(String(255))
    storage_path: Mapped[str] = mapped_column(String(1024))
    size_bytes: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    kind: Mapped[BackupKind] = mapped_column(default=BackupKind.MANUAL, index=True)
    is_protected: Mapped[bool] = mapped_column(Boolean, default=False)

    # Client-side, microsecond resolution
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, index=True
    )
    # Tie-breaker for rows sharing a created_at value
    sequence: Mapped[int] = mapped_column(Integer, default=0)
