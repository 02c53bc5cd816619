"""Shared pytest fixtures for all tests."""

import io
import zipfile
from datetime import timedelta

import pytest

from app import create_app
from config import Settings
from services import build_services


@pytest.fixture(autouse=True)
def no_libmagic(monkeypatch):
    """Keep results independent of whether libmagic is installed."""
    monkeypatch.setattr("validator.HAS_MAGIC", False)


@pytest.fixture(autouse=True)
def private_tempdir(tmp_path, monkeypatch):
    """Route tempfile (bundle zips) into the test's own directory."""
    tmp = tmp_path / "systmp"
    tmp.mkdir()
    monkeypatch.setattr("tempfile.tempdir", str(tmp))
    return tmp


@pytest.fixture
def settings(tmp_path):
    """
    Settings rooted in a temporary directory with small sizes.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Settings with the three roots created
    """
    s = Settings(
        upload_dir=tmp_path / "uploads",
        staging_dir=tmp_path / "tmp_chunks",
        data_dir=tmp_path / "data",
        chunk_size=20 * 1024,
        max_file_size=1024 * 1024,
        share_ttl=timedelta(days=2),
        stale_session_age=timedelta(hours=48),
    )
    s.ensure_dirs()
    return s


@pytest.fixture
def services(settings):
    return build_services(settings)


@pytest.fixture
def guard(services):
    return services.guard


@pytest.fixture
def chunks(services):
    return services.chunks


@pytest.fixture
def store(services):
    return services.store


@pytest.fixture
def assembler(services):
    return services.assembler


@pytest.fixture
def delivery(services):
    return services.delivery


@pytest.fixture
def sweeper(services):
    return services.sweeper


@pytest.fixture
def app(settings):
    flask_app = create_app(settings)
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


def make_zip_bytes(size: int = 4096, name: str = "payload.bin") -> bytes:
    """A real zip archive holding one stored member of roughly `size` bytes."""
    buf = io.BytesIO()
    payload = bytes((i * 7 + 3) % 251 for i in range(size))
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_STORED) as zf:
        zf.writestr(name, payload)
    return buf.getvalue()


def split(data: bytes, chunk_size: int):
    return [data[i:i + chunk_size] for i in range(0, len(data), chunk_size)]


def upload_all(chunk_store, session_id: str, data: bytes, chunk_size: int, order=None) -> int:
    """Push every chunk of `data` through the store, optionally out of order."""
    pieces = split(data, chunk_size)
    indices = list(range(len(pieces))) if order is None else order
    for i in indices:
        chunk_store.put_chunk(session_id, i, len(pieces), io.BytesIO(pieces[i]))
    return len(pieces)


@pytest.fixture
def zip_bytes():
    return make_zip_bytes(50 * 1024)


@pytest.fixture
def make_share(store, tmp_path):
    """Create a share directly through the store from raw bytes."""
    counter = {"n": 0}

    def _make(data: bytes, name: str = "archive.zip", sender: str = ""):
        counter["n"] += 1
        artifact = tmp_path / f"artifact-{counter['n']}"
        artifact.write_bytes(data)
        return store.create(artifact, name, sender)

    return _make
