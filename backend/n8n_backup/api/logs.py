# n8n_backup/api/logs.py
"""Read-only view of the audit log."""
from typing import List

from fastapi import APIRouter, Query

from n8n_backup.api.deps import DBSession
from n8n_backup.schemas.log_entry import LogEntryResponse
from n8n_backup.services.log_service import LogService

router = APIRouter(prefix="/logs", tags=["Logs"])


@router.get("", response_model=List[LogEntryResponse])
def list_logs(db: DBSession, limit: int = Query(100, ge=1, le=1000)):
    """Most recent audit entries first."""
    return LogService(db).get_logs(limit)
