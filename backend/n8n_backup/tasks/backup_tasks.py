# n8n_backup/tasks/backup_tasks.py
"""Scheduled snapshot capture using Dramatiq."""
import dramatiq
import logging

from n8n_backup.database import get_session_local
from n8n_backup.models.backup import BackupKind

logger = logging.getLogger(__name__)


@dramatiq.actor(max_retries=0)
def scheduled_backup_task():
    """Capture a scheduled snapshot of the configured workload."""
    logger.info("Starting scheduled backup")

    db = get_session_local()()
    try:
        from n8n_backup.services.backup_service import BackupService
        from n8n_backup.services.docker_service import get_docker_service

        backup = BackupService(db, docker_factory=get_docker_service).create_backup(BackupKind.SCHEDULED)
        logger.info(f"Scheduled backup {backup.filename} completed")
    except Exception as e:
        logger.error(f"Scheduled backup failed: {e}")
    finally:
        db.close()
