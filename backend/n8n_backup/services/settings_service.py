# backend/n8n_backup/services/settings_service.py
"""Read access to the workload settings table, with the stock defaults."""
from dataclasses import dataclass
from typing import Optional
from sqlalchemy.orm import Session

from n8n_backup.exceptions import ConfigurationError
from n8n_backup.models.setting import Setting

DEFAULTS = {
    "n8n_container_name": "n8n",
    "workload_image_match": "n8n",
    "db_type": "sqlite",
    "db_user": "n8n",
    "db_password": "",
    "db_name": "n8n",
    "db_path": "/home/node/.n8n/database.sqlite",
    "backup_retention_count": "0",
    "aws_s3_enabled": "false",
}

SUPPORTED_DB_TYPES = ("sqlite", "postgres")


@dataclass
class BackupConfig:
    container_name: str
    db_type: str
    db_user: str
    db_password: str
    db_name: str
    db_path: str
    retention_count: int


@dataclass
class S3Config:
    enabled: bool
    access_key: Optional[str]
    secret_key: Optional[str]
    region: Optional[str]
    bucket: Optional[str]
    endpoint: Optional[str]

    @property
    def is_complete(self) -> bool:
        return all([self.access_key, self.secret_key, self.bucket, self.region])


class SettingsService:
    def __init__(self, db: Session):
        self.db = db

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        setting = self.db.query(Setting).filter(Setting.key == key).first()
        if setting is not None and setting.value not in (None, ""):
            return setting.value
        if default is not None:
            return default
        return DEFAULTS.get(key)

    def get_int(self, key: str, default: int = 0) -> int:
        value = self.get(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            raise ConfigurationError(f"Setting {key} must be an integer, got {value!r}")

    def get_bool(self, key: str) -> bool:
        return (self.get(key) or "").strip().lower() == "true"

    def set(self, key: str, value: Optional[str]) -> Setting:
        setting = self.db.query(Setting).filter(Setting.key == key).first()
        if setting is None:
            setting = Setting(key=key, value=value)
            self.db.add(setting)
        else:
            setting.value = value
        self.db.commit()
        self.db.refresh(setting)
        return setting

    def backup_config(self) -> BackupConfig:
        db_type = (self.get("db_type") or "").lower()
        if db_type not in SUPPORTED_DB_TYPES:
            raise ConfigurationError(
                f"Unsupported db_type {db_type!r}, expected one of {', '.join(SUPPORTED_DB_TYPES)}"
            )
        container_name = self.get("n8n_container_name")
        if not container_name:
            raise ConfigurationError("n8n_container_name is not configured")

        return BackupConfig(
            container_name=container_name,
            db_type=db_type,
            db_user=self.get("db_user"),
            db_password=self.get("db_password") or "",
            db_name=self.get("db_name"),
            db_path=self.get("db_path"),
            retention_count=self.get_int("backup_retention_count"),
        )

    def s3_config(self) -> S3Config:
        return S3Config(
            enabled=self.get_bool("aws_s3_enabled"),
            access_key=self.get("aws_s3_access_key"),
            secret_key=self.get("aws_s3_secret_key"),
            region=self.get("aws_s3_region"),
            bucket=self.get("aws_s3_bucket"),
            endpoint=self.get("aws_s3_endpoint"),
        )
