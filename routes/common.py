# routes/common.py
import logging

from flask import current_app, jsonify

from errors import SendFileError, ValidationError

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Content-Security-Policy": "default-src 'none'",
}


def services():
    """The Services container built by create_app()."""
    return current_app.extensions["sendfile"]


def handle_sendfile_error(err: SendFileError):
    if err.status_code >= 500:
        logger.error("Request failed: %s", err)
    return jsonify(err.to_dict()), err.status_code


def require_int(source, key: str) -> int:
    """Read an integer parameter from request.form / request.args or raise ValidationError."""
    raw = source.get(key)
    if raw is None or str(raw).strip() == "":
        raise ValidationError(f"Missing {key}")
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ValidationError(f"Invalid {key}") from None


def optional_int(source, key: str):
    raw = source.get(key)
    if raw is None or str(raw).strip() == "":
        return None
    return require_int(source, key)


def with_security_headers(resp):
    resp.headers.update(SECURITY_HEADERS)
    return resp
