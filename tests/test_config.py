"""Tests for Settings defaults and environment parsing."""

from datetime import timedelta

import pytest

from config import Settings


def test_defaults():
    s = Settings()
    assert s.share_id_len == 16
    assert s.chunk_size == 20 * 1024 * 1024
    assert s.max_file_size == 2 * 1024 ** 3
    assert s.share_ttl == timedelta(days=2)
    assert s.allowed_extensions == frozenset({"zip", "rar"})
    assert s.upload_dir.is_absolute()


def test_from_env(tmp_path):
    env = {
        "SENDFILE_UPLOAD_DIR": str(tmp_path / "up"),
        "SENDFILE_CHUNK_SIZE": "1024",
        "SENDFILE_SHARE_TTL_DAYS": "0.5",
        "SENDFILE_ALLOWED_EXTENSIONS": ".ZIP, 7z",
        "SENDFILE_BASE_URL": "https://files.example.org/",
        "SENDFILE_USE_X_SENDFILE": "yes",
        "SENDFILE_LOG_LEVEL": "debug",
        "SENDFILE_MAX_CHUNKS": "",
    }
    s = Settings.from_env(env)
    assert s.upload_dir == (tmp_path / "up").resolve()
    assert s.chunk_size == 1024
    assert s.share_ttl == timedelta(hours=12)
    assert s.allowed_extensions == frozenset({"zip", "7z"})
    assert s.base_url == "https://files.example.org"
    assert s.use_x_sendfile is True
    assert s.log_level == "DEBUG"
    assert s.max_chunks == 100_000


@pytest.mark.parametrize("key,value", [
    ("SENDFILE_CHUNK_SIZE", "0"),
    ("SENDFILE_MAX_FILE_SIZE", "lots"),
    ("SENDFILE_SHARE_TTL_DAYS", "-1"),
])
def test_invalid_values_are_rejected(key, value):
    with pytest.raises(ValueError):
        Settings.from_env({key: value})


def test_ensure_dirs(tmp_path):
    s = Settings(upload_dir=tmp_path / "a", staging_dir=tmp_path / "b", data_dir=tmp_path / "c")
    s.ensure_dirs()
    assert all((tmp_path / d).is_dir() for d in "abc")
