"""Share records: one directory of opaque files plus one JSON record per share.

A share becomes visible only when its record lands in the data directory,
which happens last and by atomic rename, after every file is in place.
"""

import json
import logging
import os
import shutil
import tempfile
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional

from config import Settings
from errors import PathViolation, StorageError
from pathguard import PathGuard
from utils import file_extension, gen_id, limit_sender, now_ts, sanitize_filename

logger = logging.getLogger(__name__)

STORED_NAME_LEN = 32
MAX_ID_ATTEMPTS = 5


@dataclass(frozen=True)
class StoredFile:
    name: str    # sanitized display name, never used as a path component
    stored: str  # opaque on-disk name inside the share directory
    size: int


@dataclass(frozen=True)
class Share:
    id: str
    created: int
    expires: int
    sender: str = ""
    files: List[StoredFile] = field(default_factory=list)

    def is_expired(self, now: Optional[int] = None) -> bool:
        return (now_ts() if now is None else now) > self.expires

    def find_file(self, ref: str) -> Optional[StoredFile]:
        """Match `ref` against stored names first, then display names."""
        for f in self.files:
            if f.stored == ref:
                return f
        for f in self.files:
            if f.name == ref:
                return f
        return None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Share":
        files = [
            StoredFile(name=str(f["name"]), stored=str(f["stored"]), size=int(f["size"]))
            for f in data.get("files", [])
        ]
        return cls(
            id=str(data["id"]),
            created=int(data["created"]),
            expires=int(data["expires"]),
            sender=str(data.get("sender") or ""),
            files=files,
        )


class ShareStore:
    def __init__(self, settings: Settings, guard: PathGuard):
        self.settings = settings
        self.guard = guard

    # -- create ----------------------------------------------------------

    def _new_share_dir(self):
        for _ in range(MAX_ID_ATTEMPTS):
            share_id = gen_id(self.settings.share_id_len)
            share_dir = self.guard.share_dir(share_id)
            try:
                share_dir.mkdir(mode=0o755, parents=False)
            except FileExistsError:
                logger.warning("Share id collision on %s, regenerating", share_id)
                continue
            except OSError as exc:
                raise StorageError("Failed to create share directory") from exc
            return share_id, share_dir
        raise StorageError("Failed to create share directory")

    def _new_stored_name(self, share_id: str, display_name: str) -> str:
        ext = file_extension(display_name)
        for _ in range(MAX_ID_ATTEMPTS):
            stored = gen_id(STORED_NAME_LEN) + (f".{ext}" if ext else "")
            if not self.guard.share_file(share_id, stored).exists():
                return stored
        raise StorageError("Failed to allocate storage name")

    def create(self, artifact_path: Path, display_name: str, sender_name: str = "") -> Share:
        """Move a validated artifact into a fresh share and persist its record."""
        self.settings.upload_dir.mkdir(parents=True, exist_ok=True)
        self.settings.data_dir.mkdir(parents=True, exist_ok=True)

        share_id, share_dir = self._new_share_dir()
        try:
            name = sanitize_filename(display_name)
            stored = self._new_stored_name(share_id, name)
            target = self.guard.share_file(share_id, stored)
            try:
                os.replace(artifact_path, target)
            except OSError:
                # staging and uploads may live on different filesystems
                try:
                    shutil.move(str(artifact_path), str(target))
                except OSError as exc:
                    raise StorageError("Failed to move uploaded file") from exc
            os.chmod(target, 0o600)

            created = now_ts()
            share = Share(
                id=share_id,
                created=created,
                expires=created + int(self.settings.share_ttl.total_seconds()),
                sender=limit_sender(sender_name),
                files=[StoredFile(name=name, stored=stored, size=target.stat().st_size)],
            )
            self._save(share)
        except Exception:
            shutil.rmtree(share_dir, ignore_errors=True)
            raise

        logger.info("Created share %s (%d file(s), %d bytes)", share.id, len(share.files),
                    sum(f.size for f in share.files))
        return share

    def _save(self, share: Share) -> None:
        meta_path = self.guard.metadata_file(share.id)
        payload = json.dumps(share.to_dict(), indent=2, ensure_ascii=False)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{share.id}.", suffix=".tmp", dir=meta_path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, meta_path)
        except OSError as exc:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise StorageError("Failed to save metadata") from exc

    # -- read ------------------------------------------------------------

    def load(self, share_id) -> Optional[Share]:
        """Return the share or None; never raises for bad ids or bad records."""
        if not self.guard.is_valid_share_id(share_id):
            return None
        try:
            meta_path = self.guard.metadata_file(share_id)
            with open(meta_path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
            if not isinstance(data, dict):
                logger.warning("Share record %s is not a JSON object", share_id)
                return None
            share = Share.from_dict(data)
        except FileNotFoundError:
            return None
        except PathViolation:
            return None
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Unreadable share record %s: %s", share_id, exc)
            return None
        if share.id != share_id:
            logger.warning("Share record %s claims id %r", share_id, share.id)
            return None
        return share

    def iter_ids(self) -> Iterator[str]:
        """Yield the id of every record file in the data directory, valid or not."""
        if not self.settings.data_dir.is_dir():
            return
        with os.scandir(self.settings.data_dir) as entries:
            for entry in entries:
                if entry.name.endswith(".json") and entry.is_file(follow_symlinks=False):
                    yield entry.name[: -len(".json")]

    # -- delete ----------------------------------------------------------

    def delete(self, share_id: str) -> None:
        """Remove a share's directory and record. Used only by the sweeper."""
        share_dir = self.guard.share_dir(share_id)
        meta_path = self.guard.metadata_file(share_id)
        if not self.guard.is_inside(self.settings.upload_dir, share_dir):
            raise StorageError("Share directory outside upload root")
        try:
            # drop the record first so readers stop seeing the share
            meta_path.unlink(missing_ok=True)
            if share_dir.is_dir() and not share_dir.is_symlink():
                shutil.rmtree(share_dir)
        except OSError as exc:
            raise StorageError(f"Failed to delete share {share_id}") from exc
