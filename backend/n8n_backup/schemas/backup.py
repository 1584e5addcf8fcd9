# backend/n8n_backup/schemas/backup.py
from typing import Optional
from datetime import datetime
from pydantic import BaseModel
from uuid import UUID

from n8n_backup.models.backup import BackupKind


class BackupResponse(BaseModel):
    id: UUID
    filename: str
    size_bytes: Optional[int] = None
    kind: BackupKind
    is_protected: bool
    created_at: datetime

    class Config:
        from_attributes = True


class ProtectionUpdate(BaseModel):
    is_protected: bool


class RotateRequest(BaseModel):
    limit: int


class ConnectionStatus(BaseModel):
    n8n: bool = False
    database: bool = False
