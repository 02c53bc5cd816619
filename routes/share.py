# routes/share.py
import logging

from flask import Blueprint, Response, jsonify, render_template_string, request, send_file

from config import APP_TITLE
from delivery import header_safe
from errors import ValidationError
from utils import human_size, ts_to_iso
from .common import require_int, services, with_security_headers

logger = logging.getLogger(__name__)

bp = Blueprint("share", __name__)

INDEX_HTML = """<!doctype html>
<html>
<head><meta charset="utf-8"><title>{{ app_title }}</title></head>
<body>
<h1>{{ app_title }}</h1>
<p>Upload a {{ extensions }} archive in chunks of {{ chunk_size }} and share the link.
Links expire after {{ ttl_days }} day(s).</p>
</body>
</html>
"""

SHARE_HTML = """<!doctype html>
<html>
<head><meta charset="utf-8"><title>{{ app_title }}</title></head>
<body>
{% if share %}
<h1>Shared files</h1>
{% if share.sender %}<p>From: {{ share.sender }}</p>{% endif %}
<p>Available until {{ expires }}</p>
<ul>
{% for f in share.files %}
  <li><a href="?s={{ share.id }}&amp;file={{ f.stored }}">{{ f.name }}</a> ({{ sizes[loop.index0] }})</li>
{% endfor %}
</ul>
<p><a href="?s={{ share.id }}&amp;zip=1">Download all as zip</a></p>
{% else %}
<h1>Share not found</h1>
<p>This link is invalid or has expired.</p>
{% endif %}
</body>
</html>
"""

@bp.get("/")
def index():
    action = request.args.get("action")
    if action == "download_chunk":
        return download_chunk()
    if action == "upload_status":
        return upload_status()
    if action:
        raise ValidationError("Unknown action")

    if "s" in request.args:
        share_id = request.args.get("s", "")
        if "file" in request.args:
            return download_file(share_id, request.args.get("file", ""))
        if "zip" in request.args:
            return download_bundle(share_id)
        return landing(share_id)

    settings = services().settings
    return render_template_string(
        INDEX_HTML,
        app_title=APP_TITLE,
        extensions=" / ".join(sorted(settings.allowed_extensions)),
        chunk_size=human_size(settings.chunk_size),
        ttl_days=round(settings.share_ttl.total_seconds() / 86400, 1),
    )

def landing(share_id: str):
    svc = services()
    share = svc.store.load(share_id)  # validates the id before touching the disk
    if share is None or share.is_expired():
        return render_template_string(SHARE_HTML, app_title=APP_TITLE, share=None), 404
    return render_template_string(
        SHARE_HTML,
        app_title=APP_TITLE,
        share=share,
        sizes=[human_size(f.size) for f in share.files],
        expires=ts_to_iso(share.expires),
    )

def download_file(share_id: str, file_ref: str):
    found, path = services().delivery.serve_whole(share_id, file_ref)
    resp = send_file(
        path,
        mimetype="application/octet-stream",
        as_attachment=True,
        download_name=header_safe(found.name),
        max_age=0,
    )
    resp.headers["Content-Description"] = "File Transfer"
    return with_security_headers(resp)

def download_bundle(share_id: str):
    bundle = services().delivery.serve_bundle(share_id)
    resp = Response(bundle.iter_bytes(), mimetype="application/zip")
    resp.headers["Content-Length"] = str(bundle.size)
    resp.headers["Content-Disposition"] = f'attachment; filename="{bundle.download_name}"'
    # also covers clients that disconnect before the body is read
    resp.call_on_close(bundle.cleanup)
    return with_security_headers(resp)

def download_chunk():
    svc = services()
    args = request.args
    share_id = args.get("share", "")
    file_ref = args.get("file", "")
    if not svc.guard.is_valid_share_id(share_id) or not file_ref:
        raise ValidationError("Missing or invalid parameters")
    chunk_index = require_int(args, "chunk_index")
    chunk_size = require_int(args, "chunk_size")

    piece = svc.delivery.serve_chunk(share_id, file_ref, chunk_index, chunk_size)
    resp = Response(piece.iter_bytes(), mimetype="application/octet-stream")
    resp.headers.update(piece.headers())
    return with_security_headers(resp)

def upload_status():
    svc = services()
    session_id = svc.guard.require_session_id(request.args.get("file_id", ""))
    total = svc.chunks.check_total(require_int(request.args, "total_chunks"))
    received = svc.chunks.received_indices(session_id)
    missing = svc.chunks.missing_indices(session_id, total)
    return jsonify(ok=True, received=[i for i in received if i < total], missing=missing, complete=not missing)
