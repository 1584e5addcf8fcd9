# backend/n8n_backup/config.py
from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-level configuration, sourced from the environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="N8N_BACKUP_",
        extra="ignore",
    )

    app_name: str = "n8n Backup Manager"
    app_version: str = "1.2.2"

    database_url: str = "sqlite:///./data/n8n_backup.db"

    # Snapshot storage; self-update history lives in a nested directory
    backup_dir: Path = Path("./backups")
    update_history_dirname: str = "pre_update_backups"

    # Root of the running installation, target of self-update extraction
    install_root: Path = Path(".")
    # Relative to install_root; archived before an update is applied
    update_backup_paths: List[str] = [
        "pyproject.toml",
        "backend/n8n_backup/main.py",
        "backend/n8n_backup/database.py",
        "data",
    ]

    update_manifest_url: str = (
        "https://raw.githubusercontent.com/aleksnero/n8n-backup-manager/main/version.json"
    )
    trusted_update_origin: str = "https://github.com/aleksnero/n8n-backup-manager/"

    redis_url: str = "redis://localhost:6379/0"
    # Expiry of a workload lock whose holder died without releasing it
    lock_ttl_seconds: int = 6 * 60 * 60

    @property
    def update_history_dir(self) -> Path:
        return self.backup_dir / self.update_history_dirname


@lru_cache
def get_settings() -> Settings:
    return Settings()
