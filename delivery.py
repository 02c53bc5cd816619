"""Serving a share's files: whole, by byte-range chunk, or bundled as one zip.

The service returns plain descriptions (paths, offsets, generators); the
Flask routes turn them into responses.
"""

import logging
import os
import tempfile
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Tuple

from config import Settings
from errors import NotFound, PathViolation, RangeError, StorageError, ValidationError
from pathguard import PathGuard
from shares import Share, ShareStore, StoredFile

logger = logging.getLogger(__name__)

STREAM_BUFFER = 8192
MAX_CHUNK_SIZE_FACTOR = 4


def header_safe(name: str) -> str:
    """Strip characters that could break out of a quoted header value."""
    cleaned = "".join(ch for ch in os.path.basename(name) if ch not in '"\\' and ch.isprintable())
    return cleaned or "download"


def _iter_file_range(path: Path, start: int, length: int) -> Iterator[bytes]:
    with open(path, "rb") as fh:
        fh.seek(start)
        remaining = length
        while remaining > 0:
            buf = fh.read(min(STREAM_BUFFER, remaining))
            if not buf:
                break
            remaining -= len(buf)
            yield buf


@dataclass(frozen=True)
class ChunkSlice:
    path: Path
    display_name: str
    file_size: int
    index: int
    start: int
    length: int

    def headers(self) -> dict:
        name = header_safe(self.display_name)
        return {
            "Content-Length": str(self.length),
            "Content-Disposition": f'inline; filename="{name}"',
            "X-File-Size": str(self.file_size),
            "X-Chunk-Index": str(self.index),
            "X-Chunk-Size": str(self.length),
            "X-File-Name": name,
        }

    def iter_bytes(self) -> Iterator[bytes]:
        return _iter_file_range(self.path, self.start, self.length)


@dataclass
class Bundle:
    path: Path
    size: int
    download_name: str

    def cleanup(self) -> None:
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove bundle %s: %s", self.path, exc)

    def iter_bytes(self) -> Iterator[bytes]:
        try:
            yield from _iter_file_range(self.path, 0, self.size)
        finally:
            self.cleanup()


class DeliveryService:
    def __init__(self, settings: Settings, guard: PathGuard, store: ShareStore):
        self.settings = settings
        self.guard = guard
        self.store = store

    def get_share(self, share_id) -> Share:
        if not self.guard.is_valid_share_id(share_id):
            logger.warning("Rejected malformed share id %r", str(share_id)[:80])
            raise NotFound("Share not found")
        share = self.store.load(share_id)
        if share is None or share.is_expired():
            raise NotFound("Share not found")
        return share

    def resolve(self, share_id, file_ref: str) -> Tuple[Share, StoredFile, Path]:
        share = self.get_share(share_id)
        found = share.find_file(file_ref or "")
        if found is None:
            raise NotFound("File not found")
        try:
            path = self.guard.share_file(share.id, found.stored)
        except PathViolation:
            raise NotFound("File not found") from None
        if not path.is_file():
            logger.warning("Share %s lists %s but it is missing on disk", share.id, found.stored)
            raise NotFound("File not found")
        return share, found, path

    def serve_whole(self, share_id, file_ref: str) -> Tuple[StoredFile, Path]:
        _, found, path = self.resolve(share_id, file_ref)
        logger.info("Serving %s from share %s", found.stored, share_id)
        return found, path

    def serve_chunk(self, share_id, file_ref: str, chunk_index: int, chunk_size: int) -> ChunkSlice:
        if chunk_index < 0:
            raise ValidationError("Invalid chunk_index")
        if chunk_size <= 0 or chunk_size > self.settings.chunk_size * MAX_CHUNK_SIZE_FACTOR:
            raise ValidationError("Invalid chunk_size")
        _, found, path = self.resolve(share_id, file_ref)

        file_size = path.stat().st_size
        start = chunk_index * chunk_size
        if start >= file_size:
            raise RangeError()
        end = min(start + chunk_size, file_size)
        return ChunkSlice(
            path=path,
            display_name=found.name,
            file_size=file_size,
            index=chunk_index,
            start=start,
            length=end - start,
        )

    def serve_bundle(self, share_id) -> Bundle:
        """Write every present file of the share into a temporary zip.

        Missing or empty files are logged and left out. The caller owns the
        returned bundle and must exhaust `iter_bytes()` or call `cleanup()`.
        """
        share = self.get_share(share_id)
        fd, tmp_name = tempfile.mkstemp(prefix=f"sendfile-{share.id}-", suffix=".zip")
        os.close(fd)
        try:
            used = set()
            with zipfile.ZipFile(tmp_name, "w", compression=zipfile.ZIP_STORED, allowZip64=True) as zf:
                for f in share.files:
                    try:
                        path = self.guard.share_file(share.id, f.stored)
                    except PathViolation:
                        logger.warning("Invalid path for zip entry %r in share %s", f.stored, share.id)
                        continue
                    if not path.is_file() or path.stat().st_size == 0:
                        logger.warning("File missing or empty for zip: share %s, %s", share.id, f.stored)
                        continue
                    zf.write(path, arcname=self._entry_name(f.name, used))
            size = os.path.getsize(tmp_name)
        except OSError as exc:
            _remove(tmp_name)
            raise StorageError("Could not create zip") from exc
        except BaseException:
            _remove(tmp_name)
            raise
        return Bundle(path=Path(tmp_name), size=size, download_name=f"{share.id}.zip")

    @staticmethod
    def _entry_name(display_name: str, used: set) -> str:
        base = header_safe(display_name).replace("\x00", "")
        name = base
        n = 1
        while name in used:
            stem, dot, ext = base.rpartition(".")
            name = f"{stem} ({n}).{ext}" if dot and stem else f"{base} ({n})"
            n += 1
        used.add(name)
        return name


def _remove(path) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
