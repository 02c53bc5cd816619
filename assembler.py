"""Finalize: turn a complete chunk session into a share, exactly once."""

import fcntl
import logging
import os
import shutil
import time
from contextlib import contextmanager
from pathlib import Path

from chunks import COPY_BUFFER, ChunkSessionStore
from config import Settings
from errors import ChunkError, MissingChunk, SendFileError, StorageError, ValidationError
from pathguard import PathGuard
from shares import Share, ShareStore
from validator import TypeSizeValidator

logger = logging.getLogger(__name__)

LOCK_NAME = ".lock"
ARTIFACT_NAME = "final"


class Assembler:
    def __init__(
        self,
        settings: Settings,
        guard: PathGuard,
        chunks: ChunkSessionStore,
        validator: TypeSizeValidator,
        store: ShareStore,
    ):
        self.settings = settings
        self.guard = guard
        self.chunks = chunks
        self.validator = validator
        self.store = store

    @contextmanager
    def session_lock(self, session_id: str):
        """Hold an exclusive flock on the session's lock file.

        Blocks while another finalize for the same session runs. Raises
        ChunkError if the session was consumed while we waited.
        """
        session_dir = self.guard.session_dir(session_id)
        lock_path = self.guard.confine(session_dir, LOCK_NAME)
        try:
            fh = open(lock_path, "ab")
        except FileNotFoundError:
            raise ChunkError("Chunks not found") from None
        except OSError as exc:
            raise StorageError("Lock error") from exc
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
            try:
                current = os.stat(lock_path)
            except FileNotFoundError:
                current = None
            if current is None or current.st_ino != os.fstat(fh.fileno()).st_ino:
                # the previous holder finalized and removed the session
                raise ChunkError("Upload already finalized")
            yield session_dir
        finally:
            fh.close()  # closing releases the flock

    def finalize(self, session_id: str, total: int, declared_name: str, sender: str = "") -> Share:
        total = self.chunks.check_total(total)
        if not declared_name:
            raise ValidationError("Missing file_name")
        session_dir = self.guard.session_dir(session_id)
        if not session_dir.is_dir():
            raise ChunkError("Chunks not found")

        with self.session_lock(session_id) as session_dir:
            artifact = self.guard.confine(session_dir, ARTIFACT_NAME)
            try:
                started = time.monotonic()
                size = self._concatenate(session_id, total, artifact)
                logger.info("Assembled session %s: %d chunks, %d bytes in %.2fs",
                            session_id, total, size, time.monotonic() - started)

                result = self.validator.check(declared_name, artifact)
                if not result.valid:
                    raise result.error

                share = self.store.create(artifact, declared_name, sender)
            except SendFileError as exc:
                logger.info("Finalize of session %s failed: %s", session_id, exc)
                self._cleanup(session_dir, artifact)
                raise
            except Exception:
                logger.exception("Finalize of session %s failed unexpectedly", session_id)
                self._cleanup(session_dir, artifact)
                raise StorageError("Failed to assemble upload") from None

            # remove the session (lock file included) before the lock is released
            shutil.rmtree(session_dir, ignore_errors=True)
        return share

    def _concatenate(self, session_id: str, total: int, artifact: Path) -> int:
        written = 0
        with open(artifact, "wb") as out:
            for i in range(total):
                slot = self.guard.chunk_slot(session_id, i)
                try:
                    src = open(slot, "rb")
                except FileNotFoundError:
                    raise MissingChunk(i) from None
                with src:
                    while True:
                        buf = src.read(COPY_BUFFER)
                        if not buf:
                            break
                        out.write(buf)
                        written += len(buf)
                slot.unlink()
        return written

    @staticmethod
    def _cleanup(session_dir: Path, artifact: Path) -> None:
        try:
            artifact.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove artifact %s: %s", artifact, exc)
        shutil.rmtree(session_dir, ignore_errors=True)
