# config.py
import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import FrozenSet, Mapping, Optional

APP_TITLE = "SendFile"

UPLOAD_DIR = Path("uploads")
STAGING_DIR = Path("tmp_chunks")
DATA_DIR = Path("data")

SHARE_ID_LEN = 16                          # hex chars
MAX_FILE_SIZE = 2 * 1024 * 1024 * 1024     # 2 GiB
CHUNK_SIZE = 20 * 1024 * 1024              # 20 MiB per chunk
SHARE_TTL_DAYS = 2
MAX_CHUNKS = 100_000
STALE_SESSION_HOURS = 48
ALLOWED_EXTENSIONS = frozenset({"zip", "rar"})

ENV_PREFIX = "SENDFILE_"


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Runtime configuration handed to every component at construction."""

    upload_dir: Path = UPLOAD_DIR
    staging_dir: Path = STAGING_DIR
    data_dir: Path = DATA_DIR
    share_id_len: int = SHARE_ID_LEN
    max_file_size: int = MAX_FILE_SIZE
    chunk_size: int = CHUNK_SIZE
    share_ttl: timedelta = timedelta(days=SHARE_TTL_DAYS)
    allowed_extensions: FrozenSet[str] = field(default_factory=lambda: ALLOWED_EXTENSIONS)
    max_chunks: int = MAX_CHUNKS
    stale_session_age: timedelta = timedelta(hours=STALE_SESSION_HOURS)
    base_url: str = ""
    use_x_sendfile: bool = False
    log_level: str = "INFO"

    def __post_init__(self):
        for name in ("share_id_len", "max_file_size", "chunk_size", "max_chunks"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.share_ttl.total_seconds() <= 0:
            raise ValueError("share_ttl must be positive")
        # store roots as absolute paths so containment checks compare like with like
        object.__setattr__(self, "upload_dir", Path(self.upload_dir).resolve())
        object.__setattr__(self, "staging_dir", Path(self.staging_dir).resolve())
        object.__setattr__(self, "data_dir", Path(self.data_dir).resolve())
        object.__setattr__(
            self,
            "allowed_extensions",
            frozenset(ext.lower().lstrip(".") for ext in self.allowed_extensions),
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from SENDFILE_* environment variables."""
        env = os.environ if environ is None else environ

        def get(name: str) -> Optional[str]:
            value = env.get(ENV_PREFIX + name)
            return value if value not in (None, "") else None

        kwargs = {}
        for name, key in (("upload_dir", "UPLOAD_DIR"), ("staging_dir", "STAGING_DIR"), ("data_dir", "DATA_DIR")):
            if get(key):
                kwargs[name] = Path(get(key))
        for name, key in (
            ("share_id_len", "SHARE_ID_LEN"),
            ("max_file_size", "MAX_FILE_SIZE"),
            ("chunk_size", "CHUNK_SIZE"),
            ("max_chunks", "MAX_CHUNKS"),
        ):
            if get(key):
                kwargs[name] = int(get(key))
        if get("SHARE_TTL_DAYS"):
            kwargs["share_ttl"] = timedelta(days=float(get("SHARE_TTL_DAYS")))
        if get("STALE_SESSION_HOURS"):
            kwargs["stale_session_age"] = timedelta(hours=float(get("STALE_SESSION_HOURS")))
        if get("ALLOWED_EXTENSIONS"):
            kwargs["allowed_extensions"] = frozenset(
                ext.strip() for ext in get("ALLOWED_EXTENSIONS").split(",") if ext.strip()
            )
        if get("BASE_URL"):
            kwargs["base_url"] = get("BASE_URL").rstrip("/")
        if get("USE_X_SENDFILE"):
            kwargs["use_x_sendfile"] = _env_bool(get("USE_X_SENDFILE"))
        if get("LOG_LEVEL"):
            kwargs["log_level"] = get("LOG_LEVEL").upper()
        return cls(**kwargs)

    def ensure_dirs(self) -> None:
        """Create the upload, staging and metadata roots if missing."""
        for directory in (self.upload_dir, self.staging_dir, self.data_dir):
            directory.mkdir(parents=True, exist_ok=True)
