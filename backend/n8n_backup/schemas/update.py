# backend/n8n_backup/schemas/update.py
from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, Field


class UpdateManifest(BaseModel):
    """Remote version.json document."""
    version: str
    download_url: str = Field(alias="downloadUrl")
    release_notes: Optional[str] = Field(default=None, alias="releaseNotes")
    release_date: Optional[str] = Field(default=None, alias="releaseDate")
    changelog: List[str] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class UpdateCheck(BaseModel):
    has_update: bool
    current_version: str
    remote_version: Optional[str] = None
    download_url: Optional[str] = None
    release_notes: Optional[str] = None
    release_date: Optional[str] = None
    changelog: List[str] = Field(default_factory=list)
    message: Optional[str] = None
    error: Optional[str] = None


class UpdateResult(BaseModel):
    success: bool
    message: str
    restart_required: bool = False


class UpdateRecord(BaseModel):
    filename: str
    version: str
    timestamp: int
    size: int
    date: datetime
