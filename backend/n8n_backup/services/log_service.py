# backend/n8n_backup/services/log_service.py
import logging
from typing import List
from sqlalchemy.orm import Session
from sqlalchemy import desc
from n8n_backup.models.log_entry import LogEntry, LogLevel

logger = logging.getLogger(__name__)

_PY_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class LogService:
    """Append-only audit sink; every entry is mirrored to the module logger."""

    def __init__(self, db: Session):
        self.db = db

    def log(self, level: LogLevel, message: str) -> None:
        logger.log(_PY_LEVELS[level], message)
        try:
            self.db.add(LogEntry(level=level, message=message))
            self.db.commit()
        except Exception as e:
            # Audit writes never propagate
            self.db.rollback()
            logger.error(f"Failed to write log entry: {e}")

    def info(self, message: str) -> None:
        self.log(LogLevel.INFO, message)

    def warn(self, message: str) -> None:
        self.log(LogLevel.WARN, message)

    def error(self, message: str) -> None:
        self.log(LogLevel.ERROR, message)

    def get_logs(self, limit: int = 100) -> List[LogEntry]:
        return self.db.query(LogEntry).order_by(desc(LogEntry.created_at)).limit(limit).all()
