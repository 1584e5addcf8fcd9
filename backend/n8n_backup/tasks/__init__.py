# n8n_backup/tasks/__init__.py
"""Dramatiq task definitions invoked by the external scheduler."""
import dramatiq
from dramatiq.brokers.redis import RedisBroker
from n8n_backup.config import get_settings

settings = get_settings()

# Configure Redis broker
redis_broker = RedisBroker(url=settings.redis_url)
dramatiq.set_broker(redis_broker)

from .backup_tasks import scheduled_backup_task

__all__ = [
    'scheduled_backup_task',
]
