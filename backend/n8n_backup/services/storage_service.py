# n8n_backup/services/storage_service.py
"""Offsite copy of snapshot files to S3-compatible object storage via MinIO."""
from typing import Optional
from urllib.parse import urlparse
from minio import Minio

from n8n_backup.services.log_service import LogService
from n8n_backup.services.settings_service import S3Config

AWS_ENDPOINT = "s3.amazonaws.com"


def build_client(config: S3Config) -> Minio:
    """
    Create a MinIO client for the configured endpoint.

    Without a custom endpoint the client talks to AWS S3. A custom endpoint
    such as ``https://minio.local:9000`` is addressed path-style, which is
    what the MinIO client uses for any non-AWS host.
    """
    endpoint = AWS_ENDPOINT
    secure = True
    if config.endpoint:
        parsed = urlparse(config.endpoint if "://" in config.endpoint else f"https://{config.endpoint}")
        endpoint = parsed.netloc
        secure = parsed.scheme != "http"

    return Minio(
        endpoint,
        access_key=config.access_key,
        secret_key=config.secret_key,
        region=config.region,
        secure=secure,
    )


class StorageService:
    """Best-effort uploader; failures are logged, never raised."""

    def __init__(self, config: S3Config, audit: LogService):
        self.config = config
        self.audit = audit
        self._client: Optional[Minio] = None

    @property
    def client(self) -> Minio:
        if self._client is None:
            self._client = build_client(self.config)
        return self._client

    def upload_backup(self, filepath: str, object_name: str) -> bool:
        """
        Upload a local snapshot file under object_name.

        Returns:
            True if the object was stored, False if skipped or failed
        """
        if not self.config.enabled:
            return False

        try:
            self.audit.info("Uploading backup to S3...")

            if not self.config.is_complete:
                self.audit.warn("S3 enabled but missing configuration. Skipping upload.")
                return False

            # Streams the file in parts rather than reading it into memory
            self.client.fput_object(
                self.config.bucket,
                object_name,
                filepath,
                content_type="application/octet-stream",
            )
            self.audit.info(f"Successfully uploaded {object_name} to S3 bucket {self.config.bucket}")
            return True
        except Exception as e:
            self.audit.error(f"Failed to upload to S3: {e}")
            return False
