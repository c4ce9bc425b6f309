from __future__ import annotations

import shutil
import textwrap
import uuid
from pathlib import Path
from typing import Callable

import fitz
import pytest
from PIL import Image

from config import Settings
from pipeline import Orchestrator, UploadedFile


def page_labels(path: Path) -> list[str]:
    """First word on every page; test PDFs carry one label per page."""
    labels = []
    with fitz.open(str(path)) as doc:
        for page in doc:
            words = page.get_text().split()
            labels.append(words[0] if words else "")
    return labels


def scratch_contents(settings: Settings) -> list[str]:
    """Every file and directory left in both scratch directories."""
    found = []
    for root in (settings.upload_dir, settings.output_dir):
        found.extend(str(p.relative_to(root.parent)) for p in sorted(root.rglob("*")))
    return found


@pytest.fixture()
def make_pdf(tmp_path: Path) -> Callable[..., Path]:
    def _create(name: str = "doc.pdf", pages: int = 1, label: str = "Page",
                size: tuple[float, float] = (595, 842)) -> Path:
        path = tmp_path / "fixtures" / name
        path.parent.mkdir(exist_ok=True)
        doc = fitz.open()
        for number in range(1, pages + 1):
            page = doc.new_page(width=size[0], height=size[1])
            page.insert_text((72, 72), f"{label}-{number:03d}", fontsize=18)
        doc.save(str(path))
        doc.close()
        return path

    return _create


@pytest.fixture()
def make_image(tmp_path: Path) -> Callable[..., Path]:
    def _create(name: str = "image.png", size: tuple[int, int] = (120, 80),
                mode: str = "RGB", color=(200, 30, 30)) -> Path:
        path = tmp_path / "fixtures" / name
        path.parent.mkdir(exist_ok=True)
        if mode == "RGBA" and len(color) == 3:
            color = (*color, 128)
        Image.new(mode, size, color).save(path)
        return path

    return _create


@pytest.fixture()
def corrupt_pdf(tmp_path: Path) -> Path:
    path = tmp_path / "fixtures" / "broken.pdf"
    path.parent.mkdir(exist_ok=True)
    path.write_bytes(b"this is not a pdf at all")
    return path


@pytest.fixture()
def tool_dir(tmp_path: Path) -> Path:
    """Private tool search path; empty unless a test installs fake tools."""
    path = tmp_path / "bin"
    path.mkdir()
    return path


@pytest.fixture()
def fake_tool(tool_dir: Path) -> Callable[[str, str], Path]:
    def _create(name: str, script: str) -> Path:
        path = tool_dir / name
        path.write_text("#!/bin/sh\n" + textwrap.dedent(script).lstrip())
        path.chmod(0o755)
        return path

    return _create


@pytest.fixture()
def settings(tmp_path: Path, tool_dir: Path) -> Settings:
    settings = Settings(
        upload_dir=tmp_path / "uploads",
        output_dir=tmp_path / "outputs",
        tool_path=str(tool_dir),
        tool_timeout=10,
        office_timeout=10,
        ocr_timeout=10,
    )
    settings.ensure_directories()
    return settings


@pytest.fixture()
def orchestrator(settings: Settings) -> Orchestrator:
    return Orchestrator(settings)


@pytest.fixture()
def upload(settings: Settings) -> Callable[..., UploadedFile]:
    """Places a copy of ``source`` in the upload directory the way the web layer does."""
    def _upload(source: Path, original_name: str | None = None) -> UploadedFile:
        original_name = original_name or source.name
        stored = settings.upload_dir / f"{uuid.uuid4().hex}{Path(original_name).suffix.lower()}"
        shutil.copyfile(source, stored)
        return UploadedFile(stored, original_name)

    return _upload
