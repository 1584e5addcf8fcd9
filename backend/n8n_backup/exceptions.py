# backend/n8n_backup/exceptions.py
"""
Error taxonomy for the snapshot and self-update engine.

Capture, restore, update apply and rollback raise these to the caller.
Upload and rotation never let them escape; they are logged and dropped.
The HTTP layer maps each kind to a status code in ``n8n_backup.main``.
"""
from typing import Optional


class BackupManagerError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(BackupManagerError):
    """A required setting is missing or holds an unsupported value."""


class RuntimeUnavailable(BackupManagerError):
    """The container runtime or the shared lock store could not be reached."""


class StreamError(BackupManagerError):
    """Local I/O or transport failure while moving bytes."""


class CommandFailedError(BackupManagerError):
    """A dump or restore tool exited non-zero, or its exit status is unknown."""

    def __init__(self, command: str, exit_code: Optional[int], output: str = ""):
        self.command = command
        self.exit_code = exit_code
        self.output = output
        if exit_code is None:
            super().__init__(f"{command} finished without a known exit status")
        else:
            super().__init__(f"{command} exited with status {exit_code}")


class UntrustedSourceError(BackupManagerError):
    """A download URL or update archive member failed validation."""


class NotFoundError(BackupManagerError):
    """Unknown snapshot id, or no self-update backup to roll back to."""


class NoUpdateAvailableError(BackupManagerError):
    """Apply was requested while the running version is current."""


class OperationInProgressError(BackupManagerError):
    """Another operation already holds the workload lock."""
