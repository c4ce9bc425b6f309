# Doc-Pipeline/config.py
import os
import logging
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

MB = 1024 * 1024


def _env_int(name, default):
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={value!r}, using default {default}.")
        return default


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, built once at startup and passed down explicitly."""

    upload_dir: Path = Path("uploads")
    output_dir: Path = Path("outputs")
    max_file_size_mb: int = 100
    max_merge_files: int = 10
    port: int = 3000
    tool_timeout: int = 120
    office_timeout: int = 60
    ocr_timeout: int = 120
    soffice_path: str | None = None
    tool_path: str | None = None
    strict_artifacts: bool = True
    log_level: str = "INFO"

    @property
    def max_content_length(self):
        return self.max_file_size_mb * MB

    @classmethod
    def from_env(cls, dotenv_path=None):
        """Reads settings from the environment (and a .env file if present)."""
        load_dotenv(dotenv_path)
        production = os.environ.get("FLASK_ENV") == "production"
        return cls(
            upload_dir=Path(os.environ.get("UPLOAD_DIR", "./uploads")),
            output_dir=Path(os.environ.get("OUTPUT_DIR", "./outputs")),
            max_file_size_mb=_env_int("MAX_FILE_SIZE_MB", 100),
            max_merge_files=_env_int("MAX_MERGE_FILES", 10),
            port=_env_int("PORT", 3000),
            tool_timeout=_env_int("TOOL_TIMEOUT_SECONDS", 120),
            office_timeout=_env_int("OFFICE_TIMEOUT_SECONDS", 60),
            ocr_timeout=_env_int("OCR_TIMEOUT_SECONDS", 120),
            soffice_path=os.environ.get("SOFFICE_PATH") or None,
            tool_path=os.environ.get("TOOL_PATH") or None,
            strict_artifacts=_env_bool("STRICT_ARTIFACTS", not production),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )

    def ensure_directories(self):
        """Creates both scratch directories if they don't exist."""
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        self.output_dir.mkdir(parents=True, exist_ok=True)
