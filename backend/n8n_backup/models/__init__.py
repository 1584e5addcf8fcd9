# backend/n8n_backup/models/__init__.py
from n8n_backup.models.base import Base
from n8n_backup.models.backup import Backup, BackupKind
from n8n_backup.models.setting import Setting
from n8n_backup.models.log_entry import LogEntry, LogLevel

__all__ = [
    "Base",
    "Backup", "BackupKind",
    "Setting",
    "LogEntry", "LogLevel",
]
