from __future__ import annotations

import logging
from pathlib import Path

import pytest

import artifacts
from artifacts import COMMITTED, RELEASED, TempArtifactTracker, build_filename
from errors import ArtifactCommitError


def test_build_filename_sanitizes_and_is_unique() -> None:
    first = build_filename("my report (final).pdf", "merged", ".pdf")
    second = build_filename("my report (final).pdf", "merged", ".pdf")

    assert first.startswith("my_report__final__pdf_merged_")
    assert first.endswith(".pdf")
    assert first != second


def test_release_removes_pending_and_keeps_committed(tmp_path: Path) -> None:
    with TempArtifactTracker() as tracker:
        upload = tracker.track(tmp_path / "upload.pdf")
        upload.path.write_bytes(b"in")
        work = tracker.new_dir(tmp_path, "split")
        (work.path / "page_1.pdf").write_bytes(b"page")
        output = tracker.new_file(tmp_path, "result", ".zip", "split")
        output.path.write_bytes(b"zip")
        tracker.commit(output)

    assert not upload.path.exists()
    assert not work.path.exists()
    assert output.path.exists()
    assert output.state == COMMITTED
    assert upload.state == RELEASED
    assert tracker.release_runs == 1
    assert set(tracker.released_paths) == {upload.path, work.path}


def test_release_runs_when_block_raises(tmp_path: Path) -> None:
    with pytest.raises(RuntimeError):
        with TempArtifactTracker() as tracker:
            artifact = tracker.track(tmp_path / "temp.bin")
            artifact.path.write_bytes(b"x")
            raise RuntimeError("boom")

    assert tracker.release_runs == 1
    assert not artifact.path.exists()


def test_release_runs_on_keyboard_interrupt(tmp_path: Path) -> None:
    with pytest.raises(KeyboardInterrupt):
        with TempArtifactTracker() as tracker:
            artifact = tracker.track(tmp_path / "temp.bin")
            artifact.path.write_bytes(b"x")
            raise KeyboardInterrupt

    assert not artifact.path.exists()


def test_missing_paths_are_fine(tmp_path: Path) -> None:
    with TempArtifactTracker() as tracker:
        tracker.track(tmp_path / "never-created.pdf")
        tracker.new_file(tmp_path, "reserved", ".pdf")

    assert tracker.release_runs == 1


def test_strict_mode_rejects_second_commit(tmp_path: Path) -> None:
    with TempArtifactTracker(strict=True) as tracker:
        first = tracker.new_file(tmp_path, "a", ".pdf")
        second = tracker.new_file(tmp_path, "b", ".pdf")
        tracker.commit(first)
        tracker.commit(first)
        with pytest.raises(ArtifactCommitError):
            tracker.commit(second)

    assert tracker.committed is first


def test_production_mode_keeps_first_commit(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    with TempArtifactTracker(strict=False) as tracker:
        first = tracker.new_file(tmp_path, "a", ".pdf")
        second = tracker.new_file(tmp_path, "b", ".pdf")
        first.path.write_bytes(b"1")
        second.path.write_bytes(b"2")
        tracker.commit(first)
        with caplog.at_level(logging.ERROR, logger="artifacts"):
            assert tracker.commit(second) is first

    assert "refusing to commit" in caplog.text
    assert first.path.exists()
    assert not second.path.exists()


def test_commit_requires_tracked_artifact(tmp_path: Path) -> None:
    tracker = TempArtifactTracker()
    stranger = artifacts.TempArtifact(tmp_path / "other.pdf")

    with pytest.raises(ValueError):
        tracker.commit(stranger)


def test_deletion_failures_are_logged_not_raised(tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
                                                 caplog: pytest.LogCaptureFixture) -> None:
    def failing_remove(path):
        raise PermissionError(f"locked: {path}")

    monkeypatch.setattr(artifacts, "remove_path", failing_remove)

    with caplog.at_level(logging.WARNING, logger="artifacts"):
        with TempArtifactTracker() as tracker:
            first = tracker.track(tmp_path / "one.tmp")
            second = tracker.track(tmp_path / "two.tmp")

    assert caplog.text.count("Could not remove temporary artifact") == 2
    assert first.state == RELEASED and second.state == RELEASED
