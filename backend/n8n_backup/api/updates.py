# n8n_backup/api/updates.py
"""API endpoints for self-update."""
from typing import List

from fastapi import APIRouter

from n8n_backup.api.deps import Updates
from n8n_backup.schemas.update import UpdateCheck, UpdateRecord, UpdateResult

router = APIRouter(prefix="/updates", tags=["Updates"])


@router.get("/check", response_model=UpdateCheck)
def check_updates(service: Updates):
    """Check for available updates."""
    return service.check_for_updates()


@router.post("/apply", response_model=UpdateResult)
def apply_update(service: Updates):
    """Download and apply the available update."""
    return service.apply_update()


@router.post("/rollback", response_model=UpdateResult)
def rollback_update(service: Updates):
    """Roll back to the most recent pre-update backup."""
    return service.rollback()


@router.get("/history", response_model=List[UpdateRecord])
def update_history(service: Updates):
    """List pre-update backups, newest first."""
    return service.get_update_history()
