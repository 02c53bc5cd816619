# app.py
import os
from typing import Optional

import click
from flask import Flask, current_app

from config import APP_TITLE, Settings
from logging_config import setup_logging
from routes import register_routes
from services import build_services

def create_app(settings: Optional[Settings] = None) -> Flask:
    settings = settings or Settings.from_env()
    logger = setup_logging("sendfile", settings.log_level)
    settings.ensure_dirs()

    app = Flask(__name__)
    # allow some multipart overhead beyond one chunk
    app.config.update(
        MAX_CONTENT_LENGTH=settings.chunk_size + 1024 * 1024,
        USE_X_SENDFILE=settings.use_x_sendfile,
    )
    app.extensions["sendfile"] = build_services(settings)

    register_routes(app)
    register_commands(app)
    logger.debug("Upload root %s, staging %s, metadata %s",
                 settings.upload_dir, settings.staging_dir, settings.data_dir)
    return app

def register_commands(app: Flask) -> None:
    @app.cli.command("sweep")
    @click.option("--dry-run", is_flag=True, help="Report what would be removed without deleting.")
    def sweep(dry_run: bool):
        """Delete expired shares and stale upload sessions."""
        report = current_app.extensions["sendfile"].sweeper.run(dry_run=dry_run)
        click.echo(
            f"expired shares: {len(report.expired_shares)}, orphaned dirs: {len(report.orphaned_dirs)}, "
            f"stale sessions: {len(report.stale_sessions)}, "
            f"stale temp files: {len(report.stale_temp_files)}, skipped: {len(report.skipped)}, "
            f"errors: {len(report.errors)}"
        )
        if report.errors:
            raise SystemExit(1)

if __name__ == "__main__":
    app = create_app()
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "5000"))
    print(f"* Starting {APP_TITLE} on http://{host}:{port}")
    app.run(host=host, port=port, threaded=True)
