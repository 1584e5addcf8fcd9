# backend/n8n_backup/schemas/log_entry.py
from datetime import datetime
from uuid import UUID
from pydantic import BaseModel
from n8n_backup.models.log_entry import LogLevel


class LogEntryResponse(BaseModel):
    id: UUID
    level: LogLevel
    message: str
    created_at: datetime

    class Config:
        from_attributes = True
