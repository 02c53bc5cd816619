# routes/upload.py
import logging

from flask import Blueprint, jsonify, request, url_for
from werkzeug.exceptions import ClientDisconnected

from errors import ChunkError, ValidationError
from .common import optional_int, require_int, services

logger = logging.getLogger(__name__)

bp = Blueprint("upload", __name__)

@bp.post("/")
def api():
    action = request.args.get("action", "")
    if action == "upload_chunk":
        return upload_chunk()
    if action == "finalize":
        return finalize()
    raise ValidationError("Unknown action")

def upload_chunk():
    svc = services()
    try:
        form = request.form
        chunk = request.files.get("chunk")
    except ClientDisconnected:
        raise ChunkError("Chunk upload truncated") from None

    session_id = svc.guard.sanitize_session_id(form.get("file_id", ""))
    if not session_id or not form.get("file_name"):
        raise ValidationError("Missing parameters")
    chunk_index = require_int(form, "chunk_index")
    total_chunks = require_int(form, "total_chunks")
    expected = optional_int(form, "chunk_bytes")

    if chunk is None:
        raise ChunkError("Chunk upload error")

    try:
        received = svc.chunks.put_chunk(session_id, chunk_index, total_chunks, chunk.stream, expected)
    except ClientDisconnected:
        raise ChunkError(f"Chunk {chunk_index} upload truncated") from None
    return jsonify(ok=True, received=received)

def finalize():
    svc = services()
    form = request.form
    session_id = svc.guard.sanitize_session_id(form.get("file_id", ""))
    file_name = form.get("file_name", "")
    if not session_id or not file_name:
        raise ValidationError("Missing finalize parameters")
    total_chunks = require_int(form, "total_chunks")

    share = svc.assembler.finalize(session_id, total_chunks, file_name, form.get("sender", ""))
    return jsonify(ok=True, share=share_url(share.id))

def share_url(share_id: str) -> str:
    base = services().settings.base_url
    if base:
        return f"{base}/?s={share_id}"
    return url_for("share.index", s=share_id, _external=True)
