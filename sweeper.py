"""Periodic cleanup of expired shares and abandoned upload sessions.

Meant to be run from cron (`flask --app app sweep`), alongside live traffic.
One bad record never stops the run.
"""

import logging
import os
import shutil
import time
from dataclasses import dataclass, field
from typing import List, Optional

from config import Settings
from errors import PathViolation, SendFileError
from pathguard import PathGuard
from shares import ShareStore

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    expired_shares: List[str] = field(default_factory=list)
    stale_sessions: List[str] = field(default_factory=list)
    orphaned_dirs: List[str] = field(default_factory=list)
    stale_temp_files: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class ExpirationSweeper:
    def __init__(self, settings: Settings, store: ShareStore, guard: PathGuard):
        self.settings = settings
        self.store = store
        self.guard = guard

    def run(self, now: Optional[float] = None, dry_run: bool = False) -> SweepReport:
        now = time.time() if now is None else now
        report = SweepReport()
        logger.info("Cleanup started%s", " (dry run)" if dry_run else "")
        self.sweep_shares(now, report, dry_run)
        self.sweep_orphaned_dirs(now, report, dry_run)
        self.sweep_sessions(now, report, dry_run)
        self.sweep_temp_records(now, report, dry_run)
        logger.info(
            "Cleanup finished: %d expired share(s), %d orphaned dir(s), %d stale session(s), %d skipped, %d error(s)",
            len(report.expired_shares), len(report.orphaned_dirs), len(report.stale_sessions),
            len(report.skipped), len(report.errors),
        )
        return report

    def sweep_shares(self, now: float, report: SweepReport, dry_run: bool = False) -> None:
        for share_id in list(self.store.iter_ids()):
            if not self.guard.is_valid_share_id(share_id):
                logger.warning("Ignoring record with malformed name %r", share_id)
                report.skipped.append(share_id)
                continue
            share = self.store.load(share_id)
            if share is None:
                logger.warning("No readable expiry for share %s, skipping", share_id)
                report.skipped.append(share_id)
                continue
            if not share.is_expired(int(now)):
                continue
            if dry_run:
                logger.info("Would remove expired share %s", share_id)
                report.expired_shares.append(share_id)
                continue
            try:
                self.store.delete(share_id)
            except SendFileError as exc:
                logger.error("Could not remove expired share %s: %s", share_id, exc)
                report.errors.append(share_id)
                continue
            logger.info("Removed expired share %s", share_id)
            report.expired_shares.append(share_id)

    def sweep_orphaned_dirs(self, now: float, report: SweepReport, dry_run: bool = False) -> None:
        """Remove old share directories whose record was never written."""
        uploads = self.settings.upload_dir
        if not uploads.is_dir():
            return
        cutoff = now - self.settings.stale_session_age.total_seconds()
        with os.scandir(uploads) as entries:
            candidates = [
                e for e in entries
                if e.is_dir(follow_symlinks=False) and self.guard.is_valid_share_id(e.name)
            ]
        for entry in candidates:
            try:
                if entry.stat(follow_symlinks=False).st_mtime >= cutoff:
                    continue
                try:
                    if self.guard.metadata_file(entry.name).exists():
                        continue
                    target = self.guard.confine(uploads, entry.name)
                except PathViolation:
                    report.skipped.append(entry.name)
                    continue
                if not dry_run:
                    shutil.rmtree(target)
            except OSError as exc:
                logger.error("Could not remove orphaned share dir %s: %s", entry.name, exc)
                report.errors.append(entry.name)
                continue
            logger.info("%s orphaned share dir %s", "Would remove" if dry_run else "Removed", entry.name)
            report.orphaned_dirs.append(entry.name)

    def sweep_sessions(self, now: float, report: SweepReport, dry_run: bool = False) -> None:
        staging = self.settings.staging_dir
        if not staging.is_dir():
            return
        cutoff = now - self.settings.stale_session_age.total_seconds()
        with os.scandir(staging) as entries:
            candidates = [e for e in entries if e.is_dir(follow_symlinks=False)]
        for entry in candidates:
            try:
                if entry.stat(follow_symlinks=False).st_mtime >= cutoff:
                    continue
                try:
                    target = self.guard.confine(staging, entry.name)
                except PathViolation:
                    report.skipped.append(entry.name)
                    continue
                if not dry_run:
                    shutil.rmtree(target)
            except OSError as exc:
                logger.error("Could not remove stale session %s: %s", entry.name, exc)
                report.errors.append(entry.name)
                continue
            if dry_run:
                logger.info("Would remove stale upload session %s", entry.name)
            else:
                logger.info("Removed stale upload session %s", entry.name)
            report.stale_sessions.append(entry.name)

    def sweep_temp_records(self, now: float, report: SweepReport, dry_run: bool = False) -> None:
        """Remove metadata temp files left behind by a crash mid-write."""
        data_dir = self.settings.data_dir
        if not data_dir.is_dir():
            return
        cutoff = now - self.settings.stale_session_age.total_seconds()
        with os.scandir(data_dir) as entries:
            for entry in entries:
                if not (entry.name.startswith(".") and entry.name.endswith(".tmp")):
                    continue
                try:
                    if not entry.is_file(follow_symlinks=False) or entry.stat().st_mtime >= cutoff:
                        continue
                    if not dry_run:
                        os.unlink(entry.path)
                except OSError as exc:
                    logger.error("Could not remove temp record %s: %s", entry.name, exc)
                    report.errors.append(entry.name)
                    continue
                report.stale_temp_files.append(entry.name)
