from __future__ import annotations

from pathlib import Path

import pytest

from config import Settings


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> pytest.MonkeyPatch:
    for name in ("UPLOAD_DIR", "OUTPUT_DIR", "MAX_FILE_SIZE_MB", "MAX_MERGE_FILES", "PORT",
                 "TOOL_TIMEOUT_SECONDS", "OFFICE_TIMEOUT_SECONDS", "OCR_TIMEOUT_SECONDS",
                 "SOFFICE_PATH", "TOOL_PATH", "STRICT_ARTIFACTS", "FLASK_ENV", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


def test_defaults(clean_env) -> None:
    settings = Settings.from_env()

    assert settings.upload_dir == Path("uploads")
    assert settings.max_file_size_mb == 100
    assert settings.max_content_length == 100 * 1024 * 1024
    assert settings.port == 3000
    assert settings.strict_artifacts is True
    assert settings.soffice_path is None


def test_environment_overrides(clean_env, tmp_path: Path) -> None:
    clean_env.setenv("OUTPUT_DIR", str(tmp_path / "out"))
    clean_env.setenv("MAX_MERGE_FILES", "4")
    clean_env.setenv("SOFFICE_PATH", "/opt/libreoffice/program/soffice")
    clean_env.setenv("LOG_LEVEL", "debug")

    settings = Settings.from_env()

    assert settings.output_dir == tmp_path / "out"
    assert settings.max_merge_files == 4
    assert settings.soffice_path == "/opt/libreoffice/program/soffice"
    assert settings.log_level == "DEBUG"


def test_malformed_number_falls_back(clean_env, caplog: pytest.LogCaptureFixture) -> None:
    clean_env.setenv("TOOL_TIMEOUT_SECONDS", "soon")

    assert Settings.from_env().tool_timeout == 120
    assert "TOOL_TIMEOUT_SECONDS" in caplog.text


def test_production_relaxes_commit_checks(clean_env) -> None:
    clean_env.setenv("FLASK_ENV", "production")
    assert Settings.from_env().strict_artifacts is False

    clean_env.setenv("STRICT_ARTIFACTS", "1")
    assert Settings.from_env().strict_artifacts is True


def test_ensure_directories(tmp_path: Path) -> None:
    settings = Settings(upload_dir=tmp_path / "a" / "up", output_dir=tmp_path / "b")

    settings.ensure_directories()

    assert settings.upload_dir.is_dir() and settings.output_dir.is_dir()
