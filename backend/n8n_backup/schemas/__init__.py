# backend/n8n_backup/schemas/__init__.py
from n8n_backup.schemas.backup import BackupResponse, ProtectionUpdate, RotateRequest, ConnectionStatus
from n8n_backup.schemas.update import UpdateManifest, UpdateCheck, UpdateResult, UpdateRecord
from n8n_backup.schemas.log_entry import LogEntryResponse

__all__ = [
    "BackupResponse", "ProtectionUpdate", "RotateRequest", "ConnectionStatus",
    "UpdateManifest", "UpdateCheck", "UpdateResult", "UpdateRecord",
    "LogEntryResponse",
]
