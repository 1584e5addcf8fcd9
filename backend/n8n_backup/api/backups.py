# n8n_backup/api/backups.py
"""API endpoints for database snapshot management."""
import os
import shutil
from typing import List
from uuid import UUID
import logging

from fastapi import APIRouter, HTTPException, status, UploadFile, File
from fastapi.responses import FileResponse

from n8n_backup.api.deps import Backups
from n8n_backup.models.backup import BackupKind
from n8n_backup.schemas.backup import BackupResponse, ConnectionStatus, ProtectionUpdate, RotateRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/backups", tags=["Backups"])


@router.get("", response_model=List[BackupResponse])
def list_backups(service: Backups):
    """List snapshots, newest first."""
    return service.list_backups()


@router.post("", response_model=BackupResponse, status_code=status.HTTP_201_CREATED)
def create_backup(service: Backups):
    """Capture a manual snapshot now."""
    return service.create_backup(BackupKind.MANUAL)


@router.get("/status", response_model=ConnectionStatus)
def connection_status(service: Backups):
    """Report target container and n8n workload presence."""
    return service.check_connection_status()


@router.post("/upload", response_model=BackupResponse, status_code=status.HTTP_201_CREATED)
def upload_backup(service: Backups, file: UploadFile = File(...)):
    """Register an externally produced snapshot file."""
    filename = os.path.basename(file.filename or "")
    if not filename or filename.startswith("."):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid filename",
        )

    service.backup_dir.mkdir(parents=True, exist_ok=True)
    filepath = service.backup_dir / filename
    if filepath.exists():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A backup with this filename already exists",
        )

    with open(filepath, "wb") as out:
        shutil.copyfileobj(file.file, out)

    return service.register_uploaded_backup(filename, str(filepath), filepath.stat().st_size)


@router.post("/rotate", status_code=status.HTTP_200_OK)
def rotate_backups(body: RotateRequest, service: Backups):
    """Apply the retention policy with the given limit."""
    removed = service.rotate_backups(body.limit)
    return {"removed": removed}


@router.get("/{backup_id}/download")
def download_backup(backup_id: UUID, service: Backups):
    """Download the snapshot file."""
    path = service.get_backup_path(backup_id)
    if not os.path.exists(path):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Backup file missing on disk",
        )
    return FileResponse(path, filename=os.path.basename(path), media_type="application/octet-stream")


@router.post("/{backup_id}/restore", status_code=status.HTTP_200_OK)
def restore_backup(backup_id: UUID, service: Backups):
    """Restore a snapshot into the n8n database container."""
    service.restore_backup(backup_id)
    return {"message": "Restore completed successfully"}


@router.put("/{backup_id}/protection", response_model=BackupResponse)
def set_protection(backup_id: UUID, body: ProtectionUpdate, service: Backups):
    """Protect a snapshot from rotation, or release it."""
    return service.toggle_backup_protection(backup_id, body.is_protected)


@router.delete("/{backup_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_backup(backup_id: UUID, service: Backups):
    """Delete a snapshot and its file."""
    service.delete_backup(backup_id)
