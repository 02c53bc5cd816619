"""Per-upload staging area holding raw chunks until finalize."""

import logging
import os
import re
import shutil
import tempfile
from typing import BinaryIO, List, Optional

from config import Settings
from errors import ChunkError, StorageError, ValidationError
from pathguard import PathGuard

logger = logging.getLogger(__name__)

COPY_BUFFER = 1024 * 1024
_SLOT_NAME = re.compile(r"chunk_(\d+)")


class ChunkSessionStore:
    def __init__(self, settings: Settings, guard: PathGuard):
        self.settings = settings
        self.guard = guard

    def check_total(self, total) -> int:
        if not isinstance(total, int) or total < 1 or total > self.settings.max_chunks:
            raise ValidationError("Invalid total_chunks")
        return total

    def check_index(self, index, total: int) -> int:
        if not isinstance(index, int) or index < 0 or index >= total:
            raise ValidationError("Invalid chunk_index")
        return index

    def put_chunk(
        self,
        session_id: str,
        index: int,
        total: int,
        stream: Optional[BinaryIO],
        expected_size: Optional[int] = None,
    ) -> int:
        """Store one chunk payload in its slot and return the index.

        The slot is replaced atomically, so retrying the same index is safe.
        Chunks may arrive in any order; the session directory is created by
        whichever chunk arrives first.
        """
        total = self.check_total(total)
        index = self.check_index(index, total)
        if stream is None:
            raise ChunkError("Chunk upload error")

        session_dir = self.guard.session_dir(session_id)
        slot = self.guard.chunk_slot(session_id, index)
        try:
            session_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".chunk_{index}.", suffix=".part", dir=session_dir)
        except OSError as exc:
            logger.error("Cannot prepare staging for session %s: %s", session_id, exc)
            raise StorageError("Failed to save chunk") from exc

        written = 0
        try:
            with os.fdopen(fd, "wb") as out:
                while True:
                    buf = stream.read(COPY_BUFFER)
                    if not buf:
                        break
                    out.write(buf)
                    written += len(buf)
            if written == 0:
                raise ChunkError("Empty chunk")
            if expected_size is not None and written != expected_size:
                raise ChunkError(f"Truncated chunk {index}: got {written} of {expected_size} bytes")
            os.replace(tmp_name, slot)
        except ChunkError:
            _unlink_quietly(tmp_name)
            raise
        except OSError as exc:
            _unlink_quietly(tmp_name)
            logger.error("Failed writing chunk %d of session %s: %s", index, session_id, exc)
            raise StorageError("Failed to save chunk") from exc

        logger.debug("Stored chunk %d/%d (%d bytes) for session %s", index + 1, total, written, session_id)
        return index

    def received_indices(self, session_id: str) -> List[int]:
        session_dir = self.guard.session_dir(session_id)
        if not session_dir.is_dir():
            return []
        got = []
        with os.scandir(session_dir) as entries:
            for entry in entries:
                match = _SLOT_NAME.fullmatch(entry.name)
                if match and entry.is_file(follow_symlinks=False):
                    got.append(int(match.group(1)))
        return sorted(got)

    def missing_indices(self, session_id: str, total: int) -> List[int]:
        have = set(self.received_indices(session_id))
        return [i for i in range(total) if i not in have]

    def session_complete(self, session_id: str, total: int) -> bool:
        return not self.missing_indices(session_id, self.check_total(total))

    def discard(self, session_id: str) -> None:
        session_dir = self.guard.session_dir(session_id)
        shutil.rmtree(session_dir, ignore_errors=True)


def _unlink_quietly(path) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
