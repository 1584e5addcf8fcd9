# backend/n8n_backup/models/log_entry.py
from enum import Enum
from sqlalchemy import Text
from sqlalchemy.orm import Mapped, mapped_column

from n8n_backup.models.base import Base, TimestampMixin, UUIDMixin


class LogLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class LogEntry(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "log_entries"

    level: Mapped[LogLevel] = mapped_column(index=True)
    message: Mapped[str] = mapped_column(Text)
