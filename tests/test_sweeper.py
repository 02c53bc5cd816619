"""Tests for the expiration sweep."""

import io
import json
import logging
import os
import time


def age(path, seconds):
    past = time.time() - seconds
    os.utime(path, (past, past))


class TestShares:
    def test_expired_share_is_removed(self, make_share, sweeper, settings, zip_bytes):
        share = make_share(zip_bytes)
        report = sweeper.run(now=share.expires + 1)
        assert report.expired_shares == [share.id]
        assert not (settings.upload_dir / share.id).exists()
        assert not (settings.data_dir / f"{share.id}.json").exists()

    def test_live_share_is_untouched(self, make_share, sweeper, settings, zip_bytes):
        share = make_share(zip_bytes)
        report = sweeper.run(now=share.expires - 1)
        assert report.expired_shares == []
        assert (settings.upload_dir / share.id / share.files[0].stored).exists()
        assert (settings.data_dir / f"{share.id}.json").exists()

    def test_corrupt_record_is_skipped_and_sweep_continues(self, make_share, sweeper, settings, zip_bytes):
        bad_id = "9" * 16
        (settings.data_dir / f"{bad_id}.json").write_text("{{{")
        share = make_share(zip_bytes)
        report = sweeper.run(now=share.expires + 1)
        assert bad_id in report.skipped
        assert report.expired_shares == [share.id]
        assert (settings.data_dir / f"{bad_id}.json").exists()

    def test_non_object_record_does_not_abort_run(self, make_share, sweeper, settings, zip_bytes):
        odd_id = "7" * 16
        (settings.data_dir / f"{odd_id}.json").write_text("[]")
        share = make_share(zip_bytes)
        report = sweeper.run(now=share.expires + 1)
        assert report.skipped == [odd_id]
        assert report.expired_shares == [share.id]
        assert not (settings.data_dir / f"{share.id}.json").exists()

    def test_malformed_record_name_is_skipped(self, sweeper, settings):
        (settings.data_dir / "..evil.json").write_text(json.dumps({"id": "..evil", "expires": 0}))
        report = sweeper.run()
        assert "..evil" in report.skipped
        assert (settings.data_dir / "..evil.json").exists()

    def test_hostile_share_dir_is_not_followed(self, sweeper, settings, tmp_path):
        outside = tmp_path / "precious"
        outside.mkdir()
        (outside / "keep.txt").write_text("keep")
        share_id = "8" * 16
        os.symlink(outside, settings.upload_dir / share_id)
        record = {"id": share_id, "created": 0, "expires": 1, "sender": "", "files": []}
        (settings.data_dir / f"{share_id}.json").write_text(json.dumps(record))
        report = sweeper.run()
        assert report.errors == [share_id]
        assert (outside / "keep.txt").exists()

    def test_dry_run_deletes_nothing(self, make_share, sweeper, settings, zip_bytes):
        share = make_share(zip_bytes)
        report = sweeper.run(now=share.expires + 1, dry_run=True)
        assert report.expired_shares == [share.id]
        assert (settings.data_dir / f"{share.id}.json").exists()


class TestSessions:
    def test_stale_session_is_removed(self, chunks, sweeper, settings):
        chunks.put_chunk("old", 0, 2, io.BytesIO(b"x"))
        age(settings.staging_dir / "old", 49 * 3600)
        report = sweeper.run()
        assert report.stale_sessions == ["old"]
        assert not (settings.staging_dir / "old").exists()

    def test_fresh_session_is_kept(self, chunks, sweeper, settings):
        chunks.put_chunk("new", 0, 2, io.BytesIO(b"x"))
        report = sweeper.run()
        assert report.stale_sessions == []
        assert (settings.staging_dir / "new" / "chunk_0").exists()

    def test_dry_run_keeps_stale_session(self, chunks, sweeper, settings, caplog):
        chunks.put_chunk("old", 0, 2, io.BytesIO(b"x"))
        age(settings.staging_dir / "old", 49 * 3600)
        with caplog.at_level(logging.INFO, logger="sweeper"):
            report = sweeper.run(dry_run=True)
        assert report.stale_sessions == ["old"]
        assert (settings.staging_dir / "old" / "chunk_0").exists()
        assert "Would remove stale upload session old" in caplog.text
        assert "Removed stale upload session" not in caplog.text

    def test_symlink_in_staging_is_ignored(self, sweeper, settings, tmp_path):
        outside = tmp_path / "elsewhere"
        outside.mkdir()
        (outside / "keep.txt").write_text("keep")
        link = settings.staging_dir / "link"
        os.symlink(outside, link)
        age(outside, 49 * 3600)
        sweeper.run()
        assert (outside / "keep.txt").exists()

    def test_stale_metadata_temp_file_is_removed(self, sweeper, settings):
        leftover = settings.data_dir / ".abc.123.tmp"
        leftover.write_text("{")
        age(leftover, 49 * 3600)
        report = sweeper.run()
        assert report.stale_temp_files == [".abc.123.tmp"]
        assert not leftover.exists()


class TestOrphanedDirs:
    def test_old_dir_without_record_is_removed(self, sweeper, settings):
        orphan = settings.upload_dir / ("d" * 16)
        orphan.mkdir()
        (orphan / "partial.zip").write_bytes(b"PK")
        age(orphan, 49 * 3600)
        report = sweeper.run()
        assert report.orphaned_dirs == ["d" * 16]
        assert not orphan.exists()

    def test_fresh_dir_without_record_is_kept(self, sweeper, settings):
        orphan = settings.upload_dir / ("d" * 16)
        orphan.mkdir()
        report = sweeper.run()
        assert report.orphaned_dirs == []
        assert orphan.exists()

    def test_dir_with_live_record_is_kept(self, make_share, sweeper, settings, zip_bytes):
        share = make_share(zip_bytes)
        age(settings.upload_dir / share.id, 49 * 3600)
        report = sweeper.run(now=share.expires - 1)
        assert report.orphaned_dirs == []
        assert (settings.upload_dir / share.id).exists()

    def test_unrelated_names_are_left_alone(self, sweeper, settings):
        other = settings.upload_dir / "lost+found"
        other.mkdir()
        age(other, 49 * 3600)
        sweeper.run()
        assert other.exists()

    def test_dry_run_reports_without_deleting(self, sweeper, settings, caplog):
        orphan = settings.upload_dir / ("d" * 16)
        orphan.mkdir()
        age(orphan, 49 * 3600)
        with caplog.at_level(logging.INFO, logger="sweeper"):
            report = sweeper.run(dry_run=True)
        assert report.orphaned_dirs == ["d" * 16]
        assert orphan.exists()
        assert "Would remove orphaned share dir" in caplog.text


def test_cli_command(app, make_share, settings, zip_bytes, monkeypatch):
    share = make_share(zip_bytes)
    monkeypatch.setattr("time.time", lambda: share.expires + 10)
    result = app.test_cli_runner().invoke(args=["sweep"])
    assert result.exit_code == 0, result.output
    assert "expired shares: 1" in result.output
    assert not (settings.data_dir / f"{share.id}.json").exists()
