# backend/n8n_backup/main.py
import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from n8n_backup.config import get_settings
from n8n_backup.exceptions import (
    BackupManagerError,
    ConfigurationError,
    NoUpdateAvailableError,
    NotFoundError,
    OperationInProgressError,
    UntrustedSourceError,
)
from n8n_backup.api.backups import router as backups_router
from n8n_backup.api.updates import router as updates_router
from n8n_backup.api.logs import router as logs_router
from n8n_backup.services.update_service import UpdateState, get_update_service

logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    description="Snapshot, restore and self-update for n8n in Docker",
    version=settings.app_version,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(backups_router, prefix="/api/v1")
app.include_router(updates_router, prefix="/api/v1")
app.include_router(logs_router, prefix="/api/v1")

_STATUS_CODES = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    OperationInProgressError: status.HTTP_409_CONFLICT,
    NoUpdateAvailableError: status.HTTP_400_BAD_REQUEST,
    ConfigurationError: status.HTTP_400_BAD_REQUEST,
    UntrustedSourceError: status.HTTP_400_BAD_REQUEST,
}


@app.exception_handler(BackupManagerError)
async def backup_manager_error_handler(request: Request, exc: BackupManagerError) -> JSONResponse:
    status_code = _STATUS_CODES.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error(f"{type(exc).__name__} in {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "kind": type(exc).__name__},
    )


@app.get("/health")
async def health_check():
    # A supervisor restarts the process when it sees restart_required
    update_state = get_update_service().state
    if update_state == UpdateState.RESTART_REQUIRED:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "restart_required", "app": settings.app_name},
        )
    return {"status": "healthy", "app": settings.app_name, "update_state": update_state.value}
