"""Archive type and size checks for an assembled artifact.

The declared extension is only a claim: the leading bytes must carry the
matching archive signature, and when libmagic is installed its verdict must
agree as well. Archives are never opened or extracted here.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional

try:
    import magic
    HAS_MAGIC = True
except ImportError:
    HAS_MAGIC = False

from config import Settings
from errors import SendFileError, SizeExceeded, TypeRejected
from utils import file_extension

logger = logging.getLogger(__name__)

ZIP_SIGNATURES = (b"PK\x03\x04", b"PK\x05\x06", b"PK\x07\x08")
RAR_SIGNATURES = (b"Rar!\x1a\x07\x00", b"Rar!\x1a\x07\x01\x00")

ALLOWED_MIME_TYPES: Dict[str, FrozenSet[str]] = {
    "zip": frozenset({"application/zip", "application/x-zip-compressed", "application/octet-stream"}),
    "rar": frozenset({
        "application/x-rar",
        "application/x-rar-compressed",
        "application/vnd.rar",
        "application/octet-stream",
    }),
}


def detect_archive_magic(path) -> Optional[str]:
    """Return 'zip', 'rar' or None from the first bytes of `path`."""
    try:
        with open(path, "rb") as fh:
            head = fh.read(8)
    except OSError:
        return None
    if head.startswith(ZIP_SIGNATURES):
        return "zip"
    if head.startswith(RAR_SIGNATURES):
        return "rar"
    return None


def sniff_mime(path) -> Optional[str]:
    if not HAS_MAGIC:
        return None
    try:
        return magic.from_file(str(path), mime=True)
    except Exception as exc:  # libmagic raises its own MagicException
        logger.warning("libmagic could not inspect %s: %s", path, exc)
        return None


@dataclass
class ValidationResult:
    """Outcome of `TypeSizeValidator.check`; `error` is the terminal rejection."""

    valid: bool
    reasons: List[str] = field(default_factory=list)
    error: Optional[SendFileError] = None


class TypeSizeValidator:
    def __init__(self, settings: Settings):
        self.settings = settings

    def type_problem(self, declared_filename: str, artifact_path: Path) -> Optional[str]:
        ext = file_extension(declared_filename)
        if ext not in self.settings.allowed_extensions:
            return f"Extension '{ext or '(none)'}' is not allowed"
        detected = detect_archive_magic(artifact_path)
        if detected != ext:
            return f"Content does not match a .{ext} archive"
        mime = sniff_mime(artifact_path)
        allowed = ALLOWED_MIME_TYPES.get(ext)
        if mime is not None and allowed is not None and mime not in allowed:
            return f"Detected type {mime} does not match .{ext}"
        return None

    def size_problem(self, artifact_path: Path) -> Optional[str]:
        size = os.path.getsize(artifact_path)
        if size > self.settings.max_file_size:
            return f"File too large ({size} bytes, limit {self.settings.max_file_size})"
        return None

    def check(self, declared_filename: str, artifact_path: Path) -> ValidationResult:
        # both checks always run so a rejection lists every problem at once
        type_reason = self.type_problem(declared_filename, artifact_path)
        size_reason = self.size_problem(artifact_path)
        reasons = [r for r in (type_reason, size_reason) if r]
        if not reasons:
            return ValidationResult(valid=True)

        if type_reason:
            error = TypeRejected("Invalid file type")
        else:
            error = SizeExceeded("File too large")
        logger.info("Rejected artifact %r: %s", declared_filename, "; ".join(reasons))
        return ValidationResult(valid=False, reasons=reasons, error=error)
