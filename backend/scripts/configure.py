#!/usr/bin/env python3
"""Read or write workload settings.

Usage:
    python scripts/configure.py --list
    python scripts/configure.py key=value [key=value ...]

Example:
    python scripts/configure.py db_type=postgres db_user=n8n backup_retention_count=7
"""
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from n8n_backup.database import get_engine, get_session_local
from n8n_backup.models.base import Base
from n8n_backup.models.setting import Setting
from n8n_backup.services.settings_service import SettingsService

SECRET_KEYS = {"db_password", "aws_s3_secret_key"}


def set_settings(pairs):
    """Write key=value pairs into the settings table."""
    # Ensure tables exist
    engine = get_engine()
    Base.metadata.create_all(bind=engine)

    SessionLocal = get_session_local()
    db = SessionLocal()

    try:
        service = SettingsService(db)
        for pair in pairs:
            if "=" not in pair:
                print(f"Error: expected key=value, got '{pair}'")
                return False
            key, value = pair.split("=", 1)
            service.set(key.strip(), value)
            print(f"Set {key.strip()}")
        return True

    finally:
        db.close()


def list_settings():
    """List all stored settings, secrets masked."""
    Base.metadata.create_all(bind=get_engine())

    SessionLocal = get_session_local()
    db = SessionLocal()

    try:
        settings = db.query(Setting).order_by(Setting.key.asc()).all()
        if not settings:
            print("No settings stored, defaults apply")
            return

        print("\nSettings:")
        print("-" * 60)
        for setting in settings:
            value = "********" if setting.key in SECRET_KEYS and setting.value else setting.value
            print(f"  {setting.key} = {value}")
        print("-" * 60)

    finally:
        db.close()


if __name__ == "__main__":
    if len(sys.argv) < 2 or sys.argv[1] == "--list":
        list_settings()
    else:
        ok = set_settings(sys.argv[1:])
        list_settings()
        sys.exit(0 if ok else 1)
