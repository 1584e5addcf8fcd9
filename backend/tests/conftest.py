# backend/tests/conftest.py
import io
import os
import tarfile
import zipfile
import fakeredis
import pytest
from unittest.mock import MagicMock, patch
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from docker.errors import NotFound

from n8n_backup.config import Settings
from n8n_backup.database import get_db
from n8n_backup.models import Base
from n8n_backup.services.docker_service import DockerService


def rechunk(data: bytes, size: int = 7):
    """Split bytes at arbitrary boundaries, as a socket would."""
    return [data[i:i + size] for i in range(0, len(data), size)]


class FakeDockerService(DockerService):
    """
    In-memory stand-in for one workload container.

    Container files live in `files` (absolute path -> bytes). pg_dump emits
    `pg_database`; psql -f replaces it with the named file's contents.
    """

    def __init__(self, container: str = "n8n"):
        # Skip the real client and daemon ping
        self.client = None
        self.container = container
        self.running = True
        self.images = ["n8nio/n8n:1.30.0", "postgres:16"]
        self.files = {}
        self.pg_database = b""
        self.stderr = b""
        self.exit_code = 0
        self.exec_calls = []
        self.detached_calls = []
        self.put_calls = []
        self.fail_with = None

    def _check(self, name):
        if self.fail_with is not None:
            raise self.fail_with
        if name != self.container:
            raise NotFound(f"No such container: {name}")

    def inspect(self, name):
        self._check(name)
        return {"State": {"Running": self.running}}

    def list_running(self):
        if self.fail_with is not None:
            raise self.fail_with
        return [{"id": str(i), "name": f"c{i}", "image": image} for i, image in enumerate(self.images)]

    def exec_stream(self, container, cmd, environment=None):
        self._check(container)
        self.exec_calls.append((list(cmd), list(environment or [])))
        stderr = [(None, self.stderr)] if self.stderr else []
        if cmd[0] == "pg_dump":
            half = len(self.pg_database) // 2
            frames = [(self.pg_database[:half], None)] + stderr + [(self.pg_database[half:], None)]
        elif cmd[0] == "psql":
            self.pg_database = self.files[cmd[cmd.index("-f") + 1]]
            frames = [(b"SET\nDROP TABLE\nCREATE TABLE\n", None)] + stderr
        else:
            frames = []
        return f"exec-{len(self.exec_calls)}", iter(frames)

    def exec_exit_code(self, exec_id):
        return self.exit_code

    def exec_detached(self, container, cmd):
        self._check(container)
        self.detached_calls.append(list(cmd))
        if cmd[0] == "rm":
            self.files.pop(cmd[-1], None)

    def get_archive(self, container, path):
        self._check(container)
        if path not in self.files:
            raise NotFound(f"Could not find the file {path} in container")
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w") as tar:
            info = tarfile.TarInfo(os.path.basename(path))
            info.size = len(self.files[path])
            tar.addfile(info, io.BytesIO(self.files[path]))
        return iter(rechunk(buf.getvalue(), 512))

    def put_archive(self, container, path, data):
        self._check(container)
        self.put_calls.append(path)
        with tarfile.open(fileobj=data, mode="r") as tar:
            for member in tar.getmembers():
                self.files[f"{path.rstrip('/')}/{member.name}"] = tar.extractfile(member).read()
        return True


RELEASE_URL = "https://github.com/aleksnero/n8n-backup-manager/releases/download/v1.3.0/n8n-backup-manager.zip"


def make_zip(entries):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as archive:
        for name, content in entries.items():
            archive.writestr(name, content)
    return buf.getvalue()


UPDATE_ARCHIVE = make_zip({
    "pyproject.toml": "version = '1.3.0'\n",
    "backend/n8n_backup/main.py": "# new main\n",
})


class FakeHttp:
    """requests.Session stand-in serving one manifest and one asset."""

    def __init__(self, manifest, archive=UPDATE_ARCHIVE, error=None):
        self.manifest = manifest
        self.archive = archive
        self.error = error
        self.requested = []

    def get(self, url, stream=False):
        self.requested.append(url)
        if self.error is not None:
            raise self.error
        response = MagicMock()
        response.__enter__.return_value = response
        if stream:
            response.iter_content.return_value = [self.archive[:50], self.archive[50:]]
        else:
            response.json.return_value = self.manifest
        return response


@pytest.fixture
def lock_server():
    """Redis server shared by every lock client in a test."""
    return fakeredis.FakeServer()


@pytest.fixture(autouse=True)
def lock_store(lock_server):
    """Workload locks go to an in-memory Redis instead of redis_url."""
    client = fakeredis.FakeRedis(server=lock_server)
    with patch("n8n_backup.services.locks.get_redis", return_value=client):
        yield client


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def app_settings(tmp_path):
    install_root = tmp_path / "install"
    install_root.mkdir()
    return Settings(
        backup_dir=tmp_path / "backups",
        install_root=install_root,
        app_version="1.2.2",
        update_manifest_url="https://raw.githubusercontent.com/aleksnero/n8n-backup-manager/main/version.json",
        trusted_update_origin="https://github.com/aleksnero/n8n-backup-manager/",
    )


@pytest.fixture
def fake_docker():
    return FakeDockerService()


@pytest.fixture
def mock_storage():
    """Storage factory whose uploader records calls instead of talking to S3."""
    uploader = MagicMock()
    uploader.upload_backup.return_value = False
    factory = MagicMock(return_value=uploader)
    factory.uploader = uploader
    return factory


@pytest.fixture
def backup_service(db_session, fake_docker, app_settings, mock_storage):
    from n8n_backup.services.backup_service import BackupService
    return BackupService(
        db_session,
        docker_factory=lambda: fake_docker,
        settings=app_settings,
        storage_factory=mock_storage,
    )


@pytest.fixture
def client(db_session, backup_service):
    from n8n_backup.main import app
    from n8n_backup.api.deps import get_backup_service

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_backup_service] = lambda: backup_service

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
