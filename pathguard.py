"""Confinement of every filesystem path derived from client input.

No other module joins path segments for the upload, staging or metadata
roots; they ask the guard, which validates the identifier first and then
checks that the canonical result stays under its root.
"""

import logging
import os
import re
from pathlib import Path
from typing import Union

from config import Settings
from errors import PathViolation, ValidationError

logger = logging.getLogger(__name__)

SESSION_ID_MAX_LEN = 64
_SESSION_ID_DROP = re.compile(r"[^A-Za-z0-9_\-]")

PathLike = Union[str, os.PathLike]


class PathGuard:
    def __init__(self, settings: Settings):
        self.settings = settings
        self._share_id_re = re.compile(rf"[a-f0-9]{{{settings.share_id_len}}}")

    # -- identifiers -----------------------------------------------------

    def is_valid_share_id(self, value) -> bool:
        return isinstance(value, str) and self._share_id_re.fullmatch(value) is not None

    def require_share_id(self, value) -> str:
        """Return `value` unchanged or raise PathViolation. Never touches the disk."""
        if not self.is_valid_share_id(value):
            logger.warning("Rejected malformed share id %r", str(value)[:80])
            raise PathViolation("Invalid share id")
        return value

    @staticmethod
    def sanitize_session_id(value) -> str:
        if not isinstance(value, str):
            return ""
        return _SESSION_ID_DROP.sub("", value)[:SESSION_ID_MAX_LEN]

    def require_session_id(self, value) -> str:
        session_id = self.sanitize_session_id(value)
        if not session_id:
            raise ValidationError("Missing or invalid file_id")
        return session_id

    # -- containment -----------------------------------------------------

    @staticmethod
    def is_inside(base: PathLike, path: PathLike) -> bool:
        real_base = Path(os.path.realpath(base))
        real_path = Path(os.path.realpath(path))
        return real_path == real_base or real_base in real_path.parents

    def confine(self, base: PathLike, *parts: str) -> Path:
        """Join `parts` onto `base` and return the canonical path.

        Raises PathViolation when the resolved path is not a strict
        descendant of the resolved base (traversal, absolute parts, symlinks
        pointing elsewhere).
        """
        real_base = Path(os.path.realpath(base))
        candidate = Path(os.path.realpath(real_base.joinpath(*parts)))
        if real_base not in candidate.parents:
            logger.warning("Path %s escapes %s; possible traversal attempt", candidate, real_base)
            raise PathViolation()
        return candidate

    # -- resolvers -------------------------------------------------------

    def share_dir(self, share_id: str) -> Path:
        return self.confine(self.settings.upload_dir, self.require_share_id(share_id))

    def share_file(self, share_id: str, stored_name: str) -> Path:
        return self.confine(self.share_dir(share_id), stored_name)

    def metadata_file(self, share_id: str) -> Path:
        return self.confine(self.settings.data_dir, f"{self.require_share_id(share_id)}.json")

    def session_dir(self, session_id: str) -> Path:
        return self.confine(self.settings.staging_dir, self.require_session_id(session_id))

    def chunk_slot(self, session_id: str, index: int) -> Path:
        if not isinstance(index, int) or index < 0:
            raise ValidationError("Invalid chunk_index")
        return self.confine(self.session_dir(session_id), f"chunk_{index}")
