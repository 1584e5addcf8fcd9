# backend/tests/unit/test_backup_service.py
import os
import tarfile
import fakeredis
import pytest
from itertools import count
from unittest.mock import patch
from uuid import uuid4
from docker.errors import APIError

from n8n_backup.exceptions import (
    CommandFailedError,
    NotFoundError,
    OperationInProgressError,
    RuntimeUnavailable,
    StreamError,
)
from n8n_backup.models.backup import BackupKind
from n8n_backup.models.log_entry import LogEntry, LogLevel
from n8n_backup.services.backup_service import backup_timestamp
from n8n_backup.services.locks import LOCK_PREFIX, workload_lock
from n8n_backup.services.settings_service import SettingsService

SQLITE_PATH = "/home/node/.n8n/database.sqlite"
SQLITE_BYTES = b"SQLite format 3\x00" + bytes(range(256)) * 40
PG_DUMP = (
    b"--\n-- PostgreSQL database dump\n--\n"
    b"DROP TABLE IF EXISTS public.workflow_entity;\n"
    b"CREATE TABLE public.workflow_entity (id varchar(36) NOT NULL, name varchar(128));\n"
    b"COPY public.workflow_entity (id, name) FROM stdin;\nabc\tMy workflow\n\\.\n"
)


@pytest.fixture(autouse=True)
def distinct_timestamps():
    # Captures in one test can land in the same millisecond
    ticks = count()
    with patch(
        "n8n_backup.services.backup_service.backup_timestamp",
        side_effect=lambda: f"2024-01-31T12-00-00-{next(ticks):03d}Z",
    ):
        yield


@pytest.fixture
def sqlite_workload(fake_docker):
    fake_docker.files[SQLITE_PATH] = SQLITE_BYTES
    return fake_docker


@pytest.fixture
def postgres_workload(db_session, fake_docker):
    settings = SettingsService(db_session)
    settings.set("db_type", "postgres")
    settings.set("db_password", "hunter2")
    fake_docker.pg_database = PG_DUMP
    return fake_docker


def _messages(db_session, level=None):
    query = db_session.query(LogEntry)
    if level is not None:
        query = query.filter(LogEntry.level == level)
    return [e.message for e in query.all()]


def test_backup_timestamp_is_filename_safe():
    from datetime import datetime, timezone

    stamp = backup_timestamp(datetime(2024, 1, 31, 12, 5, 9, 42000, tzinfo=timezone.utc))

    assert stamp == "2024-01-31T12-05-09-042Z"


def test_sqlite_capture_stores_archive(backup_service, sqlite_workload):
    backup = backup_service.create_backup()

    assert backup.filename.startswith("backup-") and backup.filename.endswith(".tar")
    assert backup.kind == BackupKind.MANUAL
    assert backup.size_bytes == os.path.getsize(backup.storage_path)
    with tarfile.open(backup.storage_path) as tar:
        assert tar.getnames() == ["database.sqlite"]
        assert tar.extractfile("database.sqlite").read() == SQLITE_BYTES


def test_postgres_capture_keeps_only_stdout(backup_service, postgres_workload, db_session):
    postgres_workload.stderr = b"pg_dump: warning: there are circular foreign-key constraints\n"

    backup = backup_service.create_backup(BackupKind.SCHEDULED)

    assert backup.filename.endswith(".sql")
    assert backup.kind == BackupKind.SCHEDULED
    with open(backup.storage_path, "rb") as f:
        assert f.read() == PG_DUMP
    warnings = _messages(db_session, LogLevel.WARN)
    assert any("circular foreign-key" in m for m in warnings)


def test_postgres_password_only_in_environment(backup_service, postgres_workload):
    backup_service.create_backup()

    cmd, env = postgres_workload.exec_calls[0]
    assert cmd == ["pg_dump", "-U", "n8n", "-d", "n8n", "--clean", "--if-exists"]
    assert env == ["PGPASSWORD=hunter2"]
    assert not any("hunter2" in arg for arg in cmd)


def test_postgres_without_password_sends_no_environment(backup_service, fake_docker, db_session):
    SettingsService(db_session).set("db_type", "postgres")
    fake_docker.pg_database = PG_DUMP

    backup_service.create_backup()

    assert fake_docker.exec_calls[0][1] == []


def test_failed_dump_leaves_no_trace(backup_service, postgres_workload, db_session):
    postgres_workload.exit_code = 1
    postgres_workload.stderr = b'pg_dump: error: connection to server failed: FATAL: role "n8n" does not exist\n'

    with pytest.raises(CommandFailedError) as exc_info:
        backup_service.create_backup()

    assert exc_info.value.exit_code == 1
    assert backup_service.list_backups() == []
    assert os.listdir(backup_service.backup_dir) == []
    assert any(m.startswith("Backup failed:") for m in _messages(db_session, LogLevel.ERROR))


def test_unknown_dump_exit_status_fails_capture(backup_service, postgres_workload, db_session):
    postgres_workload.exit_code = None

    with pytest.raises(CommandFailedError) as exc_info:
        backup_service.create_backup()

    assert exc_info.value.exit_code is None
    assert "without a known exit status" in str(exc_info.value)
    assert backup_service.list_backups() == []
    assert os.listdir(backup_service.backup_dir) == []
    assert any("exit status unavailable" in m for m in _messages(db_session, LogLevel.WARN))


def test_unreachable_container_raises_runtime_unavailable(backup_service, sqlite_workload):
    sqlite_workload.fail_with = APIError("500 Server Error")

    with pytest.raises(RuntimeUnavailable):
        backup_service.create_backup()

    assert backup_service.list_backups() == []


def test_missing_database_file_raises_runtime_unavailable(backup_service, fake_docker):
    with pytest.raises(RuntimeUnavailable):
        backup_service.create_backup()

    assert os.listdir(backup_service.backup_dir) == []


def test_sqlite_round_trip(backup_service, sqlite_workload):
    backup = backup_service.create_backup()
    sqlite_workload.files[SQLITE_PATH] = b"corrupted"

    backup_service.restore_backup(backup.id)

    assert sqlite_workload.files[SQLITE_PATH] == SQLITE_BYTES
    assert sqlite_workload.put_calls == ["/home/node/.n8n"]


def test_postgres_round_trip(backup_service, postgres_workload, db_session):
    backup = backup_service.create_backup()
    postgres_workload.pg_database = b"DROP TABLE public.workflow_entity;\n"

    backup_service.restore_backup(backup.id)

    assert postgres_workload.pg_database == PG_DUMP
    cmd, env = postgres_workload.exec_calls[-1]
    assert cmd[:5] == ["psql", "-U", "n8n", "-d", "n8n"]
    assert env == ["PGPASSWORD=hunter2"]
    # Temp file in the container is cleaned up
    assert not any(path.startswith("/tmp/") for path in postgres_workload.files)
    assert postgres_workload.detached_calls[0][:2] == ["rm", "-f"]
    assert "Restore completed successfully" in _messages(db_session, LogLevel.INFO)


def test_postgres_restore_failure_still_cleans_up(backup_service, postgres_workload):
    backup = backup_service.create_backup()
    postgres_workload.exit_code = 3
    postgres_workload.stderr = b"psql:/tmp/restore.sql:5: ERROR:  syntax error\n"

    with pytest.raises(CommandFailedError):
        backup_service.restore_backup(backup.id)

    assert not any(path.startswith("/tmp/") for path in postgres_workload.files)


def test_unknown_restore_exit_status_is_not_success(backup_service, postgres_workload, db_session):
    backup = backup_service.create_backup()
    postgres_workload.exit_code = None

    with pytest.raises(CommandFailedError) as exc_info:
        backup_service.restore_backup(backup.id)

    assert exc_info.value.exit_code is None
    assert "Restore completed successfully" not in _messages(db_session, LogLevel.INFO)


def test_restore_error_markers_only_warn(backup_service, postgres_workload, db_session):
    backup = backup_service.create_backup()
    postgres_workload.stderr = b'ERROR:  relation "x" does not exist\n'

    backup_service.restore_backup(backup.id)

    assert "Potential errors detected in restore output." in _messages(db_session, LogLevel.WARN)


def test_restore_unknown_id_raises(backup_service, sqlite_workload):
    with pytest.raises(NotFoundError):
        backup_service.restore_backup(uuid4())

    assert sqlite_workload.put_calls == []


def test_restore_missing_file_raises(backup_service, sqlite_workload):
    backup = backup_service.create_backup()
    os.remove(backup.storage_path)

    with pytest.raises(StreamError):
        backup_service.restore_backup(backup.id)


def test_upload_failure_does_not_fail_capture(backup_service, sqlite_workload, mock_storage):
    mock_storage.uploader.upload_backup.side_effect = Exception("endpoint unreachable")

    backup = backup_service.create_backup()

    assert [b.id for b in backup_service.list_backups()] == [backup.id]
    mock_storage.uploader.upload_backup.assert_called_once_with(backup.storage_path, backup.filename)


def test_capture_applies_retention(backup_service, sqlite_workload, db_session):
    SettingsService(db_session).set("backup_retention_count", "2")

    created = []
    for _ in range(4):
        backup = backup_service.create_backup()
        created.append((backup.id, backup.storage_path))

    remaining = backup_service.list_backups()
    assert [b.id for b in remaining] == [created[3][0], created[2][0]]
    assert not os.path.exists(created[0][1])
    assert os.path.exists(created[3][1])


def test_protected_backups_survive_rotation(backup_service, sqlite_workload):
    first = backup_service.create_backup()
    backup_service.toggle_backup_protection(first.id, True)
    for _ in range(3):
        backup_service.create_backup()

    removed = backup_service.rotate_backups(1)

    remaining = backup_service.list_backups()
    assert removed == 2
    assert len(remaining) == 2
    assert first.id in [b.id for b in remaining]


def test_concurrent_operation_is_rejected(backup_service, sqlite_workload):
    with workload_lock("n8n"):
        with pytest.raises(OperationInProgressError):
            backup_service.create_backup()
        with pytest.raises(OperationInProgressError):
            backup_service.rotate_backups(1)

    # Lock released; operations proceed again
    assert backup_service.create_backup() is not None


def test_delete_rejected_while_workload_busy(backup_service, sqlite_workload):
    backup = backup_service.create_backup()

    with workload_lock("n8n"):
        with pytest.raises(OperationInProgressError):
            backup_service.delete_backup(backup.id)

    assert os.path.exists(backup.storage_path)
    assert [b.id for b in backup_service.list_backups()] == [backup.id]


def test_lock_held_by_another_process_blocks_capture(backup_service, sqlite_workload, lock_server):
    other_process = fakeredis.FakeRedis(server=lock_server)
    held = other_process.lock(f"{LOCK_PREFIX}n8n", timeout=60)
    assert held.acquire(blocking=False)

    with pytest.raises(OperationInProgressError):
        backup_service.create_backup()
    assert backup_service.list_backups() == []

    held.release()
    assert backup_service.create_backup() is not None


def test_delete_backup_removes_file_and_row(backup_service, sqlite_workload):
    backup = backup_service.create_backup()
    backup_id, path = backup.id, backup.storage_path

    backup_service.delete_backup(backup_id)

    assert backup_service.list_backups() == []
    assert not os.path.exists(path)
    with pytest.raises(NotFoundError):
        backup_service.get_backup_path(backup_id)


def test_connection_status(backup_service, fake_docker):
    status = backup_service.check_connection_status()
    assert status.database is True
    assert status.n8n is True

    fake_docker.running = False
    fake_docker.images = ["postgres:16"]
    status = backup_service.check_connection_status()
    assert status.database is False
    assert status.n8n is False


def test_connection_status_never_raises(backup_service, fake_docker):
    fake_docker.fail_with = APIError("daemon gone")

    status = backup_service.check_connection_status()

    assert status.n8n is False
    assert status.database is False
