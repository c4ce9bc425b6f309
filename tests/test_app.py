from __future__ import annotations

import dataclasses
import io
from pathlib import Path

import pytest

from app import create_app


@pytest.fixture()
def client(settings):
    app = create_app(settings)
    app.config["TESTING"] = True
    return app.test_client()


def file_part(path: Path, name: str | None = None):
    return (io.BytesIO(path.read_bytes()), name or path.name)


def test_health(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.get_json()["status"] == "ok"


def test_merge_and_download(client, settings, make_pdf) -> None:
    data = {"files": [file_part(make_pdf("a.pdf", pages=2)), file_part(make_pdf("b.pdf", pages=1))]}

    response = client.post("/merge", data=data, content_type="multipart/form-data")

    body = response.get_json()
    assert response.status_code == 200, body
    assert body["success"] is True
    assert body["pageCount"] == 3
    assert body["fileName"].startswith("a_merged_") and body["fileName"].endswith(".pdf")
    assert body["downloadUrl"] == f"/downloads/{body['fileName']}"
    assert list(settings.upload_dir.iterdir()) == []

    download = client.get(body["downloadUrl"])
    assert download.status_code == 200
    assert download.data.startswith(b"%PDF")
    assert len(download.data) == body["fileSize"]


def test_merge_needs_two_files(client, settings, make_pdf) -> None:
    response = client.post("/merge", data={"files": [file_part(make_pdf())]},
                           content_type="multipart/form-data")

    assert response.status_code == 400
    assert response.get_json() == {"success": False, "error": "ValidationError",
                                   "message": "At least 2 PDF files are required for merging."}
    assert list(settings.upload_dir.iterdir()) == []
    assert list(settings.output_dir.iterdir()) == []


def test_convert_requires_target(client, settings, make_image) -> None:
    response = client.post("/convert", data={"file": file_part(make_image())},
                           content_type="multipart/form-data")

    assert response.status_code == 400
    assert response.get_json()["error"] == "ValidationError"
    assert list(settings.upload_dir.iterdir()) == []


def test_convert_without_file(client) -> None:
    response = client.post("/convert", data={"toType": "pdf"}, content_type="multipart/form-data")

    assert response.status_code == 400
    assert response.get_json()["message"] == "No file uploaded."


def test_unsupported_conversion_lists_pairs(client, make_pdf) -> None:
    data = {"file": file_part(make_pdf()), "toType": "mp3"}

    response = client.post("/convert", data=data, content_type="multipart/form-data")

    body = response.get_json()
    assert response.status_code == 400
    assert body["error"] == "UnsupportedConversion"
    assert "pdf->docx" in body["details"]["supported"]


def test_reorder_route(client, make_pdf) -> None:
    data = {"file": file_part(make_pdf(pages=3)), "pageOrder": "[2,3,1]"}

    response = client.post("/pdf/reorder", data=data, content_type="multipart/form-data")

    assert response.status_code == 200
    assert response.get_json()["pageCount"] == 3


def test_missing_tool_reports_503(client, settings, make_pdf) -> None:
    response = client.post("/pdf/extract-images", data={"file": file_part(make_pdf())},
                           content_type="multipart/form-data")

    assert response.status_code == 503
    assert response.get_json()["error"] == "ToolUnavailable"
    assert list(settings.output_dir.iterdir()) == []


def test_extract_images_empty_result(client, settings, make_pdf, fake_tool) -> None:
    fake_tool("pdfimages", "exit 0\n")

    response = client.post("/pdf/extract-images", data={"file": file_part(make_pdf())},
                           content_type="multipart/form-data")

    body = response.get_json()
    assert response.status_code == 200
    assert body["downloadUrl"] is None
    assert body["fileName"] is None
    assert body["imageCount"] == 0
    assert list(settings.output_dir.iterdir()) == []


def test_download_missing_file(client) -> None:
    response = client.get("/downloads/nothing_here.pdf")

    assert response.status_code == 404
    assert response.get_json()["error"] == "NotFound"


def test_download_rejects_unsafe_name(client) -> None:
    response = client.get("/downloads/has%20space.pdf")

    assert response.status_code == 400


def test_unknown_route_and_wrong_method(client) -> None:
    missing = client.get("/nope")
    wrong_method = client.get("/merge")

    assert missing.status_code == 404
    assert missing.get_json()["message"] == "Route GET /nope not found."
    assert wrong_method.status_code == 405
    assert wrong_method.get_json()["success"] is False


def test_upload_too_large(settings, tmp_path) -> None:
    app = create_app(dataclasses.replace(settings, max_file_size_mb=1))
    big = tmp_path / "big.pdf"
    big.write_bytes(b"%PDF-1.4\n" + b"0" * (2 * 1024 * 1024))

    response = app.test_client().post("/compress", data={"file": file_part(big)},
                                      content_type="multipart/form-data")

    assert response.status_code == 413
    assert response.get_json()["message"] == "File too large. Maximum size is 1MB."
    assert list(settings.upload_dir.iterdir()) == []
