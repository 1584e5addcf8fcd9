# backend/n8n_backup/api/deps.py
from typing import Annotated

from fastapi import Depends
from sqlalchemy.orm import Session

from n8n_backup.database import get_db
from n8n_backup.services.backup_service import BackupService
from n8n_backup.services.docker_service import get_docker_service
from n8n_backup.services.update_service import UpdateService, get_update_service


def get_backup_service(db: Annotated[Session, Depends(get_db)]) -> BackupService:
    # Docker is only contacted when an operation needs it
    return BackupService(db, docker_factory=get_docker_service)


# Type aliases for common dependencies
DBSession = Annotated[Session, Depends(get_db)]
Backups = Annotated[BackupService, Depends(get_backup_service)]
Updates = Annotated[UpdateService, Depends(get_update_service)]
