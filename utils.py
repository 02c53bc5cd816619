# utils.py
import re
import secrets
import time
from datetime import datetime, timezone

MAX_FILENAME_LEN = 255
MAX_SENDER_LEN = 128

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_SEPARATORS = re.compile(r"[\\/]")
_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_.\-() ]")


def gen_id(length: int = 16) -> str:
    """Random lowercase hex string of exactly `length` characters."""
    return secrets.token_hex((length + 1) // 2)[:length]


def sanitize_filename(name: str) -> str:
    """Reduce a client-supplied name to a safe display name.

    Path separators become underscores, anything outside letters, digits,
    spaces and ``_.-()`` is dropped, and leading dots are stripped. An
    over-long name is cut from the stem so the extension is kept.
    """
    base = _SEPARATORS.sub("_", name or "")
    base = _UNSAFE_NAME_CHARS.sub("", base).strip().lstrip(".")
    if len(base) > MAX_FILENAME_LEN:
        stem, dot, ext = base.rpartition(".")
        if dot and stem and len(ext) < 16:
            base = stem[: MAX_FILENAME_LEN - len(ext) - 1] + "." + ext
        else:
            base = base[:MAX_FILENAME_LEN]
    return base if base else f"{gen_id(8)}.file"


def file_extension(name: str) -> str:
    """Lower-cased extension without the dot, or '' when there is none."""
    stem, dot, ext = (name or "").rpartition(".")
    return ext.lower() if dot and stem else ""


def limit_sender(sender: str) -> str:
    """Trim, strip control characters and cap the sender display name."""
    cleaned = _CONTROL_CHARS.sub("", (sender or "")).strip()
    return cleaned[:MAX_SENDER_LEN]


def now_ts() -> int:
    return int(time.time())


def ts_to_iso(ts: int) -> str:
    """UTC ISO timestamp (seconds precision) with trailing Z."""
    return datetime.fromtimestamp(ts, timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def human_size(num: int) -> str:
    size = float(num)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"
