# Doc-Pipeline/pipeline.py
"""Per-request driver for every document transformation.

``Orchestrator.run`` owns one request from start to finish:

1. every upload is registered with a fresh ``TempArtifactTracker``;
2. form fields are parsed into the operation's typed options;
3. the operation handler runs, asking the ``Job`` for uniquely named,
   tracked output files and scratch directories;
4. on success exactly one artifact is committed and described by a
   ``TransformResult``.

Leaving the tracker's ``with`` block deletes everything that was not
committed, on every exit path. Public methods return ``(result, error)``
where exactly one side is ``None``.
"""
import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import Path

import converters
import pdf_operations
import pdf_utils
import selector
from artifacts import TempArtifact, TempArtifactTracker
from config import Settings
from errors import TransformError, ValidationError, NoPagesProcessed
from options import (ConvertOptions, ImagesToPdfOptions, CompressOptions, ReorderOptions,
                     WatermarkOptions, PasswordOptions, OfficeOptions, OcrOptions, NoOptions)
from pdf_operations import PageDocument
from tool_adapter import ToolAdapter, quality_tier

logger = logging.getLogger(__name__)


# --- Request / result values ---

@dataclass(frozen=True)
class UploadedFile:
    path: Path
    original_name: str = ""

    @property
    def display_name(self):
        return self.original_name or Path(self.path).name

    @property
    def extension(self):
        return Path(self.display_name).suffix.lower().lstrip(".")

    @property
    def stem(self):
        return Path(self.display_name).stem or "file"


@dataclass(frozen=True)
class TransformRequest:
    operation: str
    uploads: tuple = ()
    options: object = None   # typed options object or raw form mapping


@dataclass(frozen=True)
class TransformResult:
    path: Path | None
    file_name: str | None
    size: int
    message: str
    metadata: dict = field(default_factory=dict)

    @property
    def empty(self):
        """True for the no-artifact outcome (e.g. a PDF without images)."""
        return self.path is None


@dataclass(frozen=True)
class Outcome:
    artifact: TempArtifact | None
    message: str
    metadata: dict = field(default_factory=dict)


class Job:
    """Everything a handler may touch while serving one request."""

    def __init__(self, request, options, tracker, settings, tools):
        self.request = request
        self.options = options
        self.tracker = tracker
        self.settings = settings
        self.tools = tools

    @property
    def uploads(self):
        return self.request.uploads

    @property
    def upload(self):
        if not self.uploads:
            raise ValidationError("No file uploaded.")
        if len(self.uploads) > 1:
            raise ValidationError("This operation accepts a single file.")
        return self.uploads[0]

    def pdf_upload(self):
        upload = self.upload
        require_pdf(upload)
        return upload

    def output_file(self, base_name, suffix, extension):
        return self.tracker.new_file(self.settings.output_dir, base_name, extension, suffix)

    def work_dir(self, base_name):
        return self.tracker.new_dir(self.settings.output_dir, base_name)


def require_pdf(upload, message="Only PDF files are allowed."):
    if upload.extension != "pdf":
        raise ValidationError(message)


def _as_uploads(value):
    if value is None:
        return ()
    if isinstance(value, UploadedFile):
        return (value,)
    return tuple(value)


def _zip_files(zip_path, entries):
    """Writes ``(source_path, archive_name)`` pairs into a new archive."""
    with zipfile.ZipFile(zip_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
        for source, arcname in entries:
            zipf.write(source, arcname=arcname)
    logger.info(f"Created zip file: {zip_path}")


# --- Orchestrator ---

class Orchestrator:

    OPERATIONS = {
        "convert": (ConvertOptions, "_convert"),
        "convert_images": (ImagesToPdfOptions, "_convert_images"),
        "merge": (NoOptions, "_merge"),
        "split": (NoOptions, "_split"),
        "compress": (CompressOptions, "_compress"),
        "reorder": (ReorderOptions, "_reorder"),
        "watermark": (WatermarkOptions, "_watermark"),
        "protect": (PasswordOptions, "_protect"),
        "unlock": (PasswordOptions, "_unlock"),
        "extract_images": (NoOptions, "_extract_images"),
        "to_office": (OfficeOptions, "_to_office"),
        "ocr": (OcrOptions, "_ocr"),
    }

    def __init__(self, settings: Settings = None, tools: ToolAdapter = None):
        self.settings = settings or Settings()
        self.tools = tools or ToolAdapter(self.settings.tool_path)
        self._conversions = {
            "office_to_pdf": self._office_to_pdf,
            "image_to_pdf": self._image_to_pdf,
            "raster_to_raster": self._raster_to_raster,
            "pdf_to_image": self._pdf_to_image,
            "pdf_to_office": self._pdf_to_office,
        }

    # --- Public operations ---

    def convert(self, upload, options=None):
        return self.run(TransformRequest("convert", _as_uploads(upload), options))

    def convert_images(self, uploads, options=None):
        return self.run(TransformRequest("convert_images", _as_uploads(uploads), options))

    def merge(self, uploads, options=None):
        return self.run(TransformRequest("merge", _as_uploads(uploads), options))

    def split(self, upload, options=None):
        return self.run(TransformRequest("split", _as_uploads(upload), options))

    def compress(self, upload, options=None):
        return self.run(TransformRequest("compress", _as_uploads(upload), options))

    def reorder(self, upload, options=None):
        return self.run(TransformRequest("reorder", _as_uploads(upload), options))

    def watermark(self, upload, options=None):
        return self.run(TransformRequest("watermark", _as_uploads(upload), options))

    def protect(self, upload, options=None):
        return self.run(TransformRequest("protect", _as_uploads(upload), options))

    def unlock(self, upload, options=None):
        return self.run(TransformRequest("unlock", _as_uploads(upload), options))

    def extract_images(self, upload, options=None):
        return self.run(TransformRequest("extract_images", _as_uploads(upload), options))

    def to_office(self, upload, options=None):
        return self.run(TransformRequest("to_office", _as_uploads(upload), options))

    def ocr(self, upload, options=None):
        return self.run(TransformRequest("ocr", _as_uploads(upload), options))

    def run(self, request: TransformRequest):
        """Executes one request. Returns ``(TransformResult, None)`` or ``(None, TransformError)``."""
        result = error = None
        with TempArtifactTracker(strict=self.settings.strict_artifacts) as tracker:
            for upload in request.uploads:
                tracker.track(upload.path)
            try:
                entry = self.OPERATIONS.get(request.operation)
                if entry is None:
                    raise ValidationError(f"Unknown operation '{request.operation}'.")
                options_cls, handler_name = entry
                options = request.options
                if not isinstance(options, options_cls):
                    options = options_cls.from_form(options or {})
                job = Job(request, options, tracker, self.settings, self.tools)
                outcome = getattr(self, handler_name)(job)
                result = self._finish(tracker, outcome)
            except TransformError as e:
                logger.warning(f"{request.operation} failed ({e.kind}): {e.message}")
                error = e
            except Exception as e:
                logger.error(f"Unexpected error during {request.operation}: {e}", exc_info=True)
                error = TransformError(f"An unexpected error occurred during {request.operation}.")
        if result is not None:
            logger.info(f"{request.operation} succeeded: {result.file_name or '[no artifact]'}")
        return result, error

    def _finish(self, tracker, outcome):
        if outcome.artifact is None:
            return TransformResult(None, None, 0, outcome.message, dict(outcome.metadata))
        path = outcome.artifact.path
        size = path.stat().st_size
        tracker.commit(outcome.artifact)
        return TransformResult(path, path.name, size, outcome.message, dict(outcome.metadata))

    # --- Conversions ---

    def _convert(self, job):
        upload = job.upload
        source_type = selector.resolve_source_type(job.options.from_type, upload.original_name, upload.path)
        capability = selector.select(source_type, job.options.to_type)
        logger.info(f"Converting '{upload.display_name}' {source_type} -> {capability.target} "
                    f"({capability.description})")
        return self._conversions[capability.operation](job, upload, source_type, capability.target)

    def _office_to_pdf(self, job, upload, source_type, target):
        output = job.output_file(upload.stem, "converted", ".pdf")
        work = job.work_dir("office")
        converters.office_convert(self.tools, upload.path, output.path, work.path, "pdf",
                                  self.settings.office_timeout, self.settings.soffice_path)
        return Outcome(output, f"Successfully converted {source_type} to pdf",
                       {"pageCount": pdf_operations.count_pages(output.path)})

    def _image_to_pdf(self, job, upload, source_type, target):
        output = job.output_file(upload.stem, "converted", ".pdf")
        count, _ = pdf_operations.images_to_pdf([(upload.path, upload.display_name)], output.path, strict=True)
        return Outcome(output, f"Successfully converted {source_type} to pdf", {"pageCount": count})

    def _raster_to_raster(self, job, upload, source_type, target):
        output = job.output_file(upload.stem, "converted", f".{target}")
        width, height = pdf_operations.convert_raster(upload.path, output.path, target)
        return Outcome(output, f"Successfully converted {source_type} to {target}",
                       {"width": width, "height": height})

    def _pdf_to_image(self, job, upload, source_type, target):
        page_count = pdf_operations.count_pages(upload.path)
        tier = quality_tier(job.options.quality)
        output = job.output_file(upload.stem, "page1", f".{target}")
        converters.rasterize_first_page(self.tools, upload.path, output.path, tier, self.settings.tool_timeout)
        return Outcome(output, f"Successfully converted pdf to {target}",
                       {"pageCount": page_count, "convertedPages": 1})

    def _pdf_to_office(self, job, upload, source_type, target):
        page_count = pdf_operations.count_pages(upload.path)
        output = job.output_file(upload.stem, "converted", f".{target}")
        work = job.work_dir("office")
        if target == "docx":
            method = converters.pdf_to_docx(self.tools, upload.path, output.path, work.path,
                                            self.settings.office_timeout, self.settings.soffice_path)
        else:
            converters.office_convert(self.tools, upload.path, output.path, work.path, target,
                                      self.settings.office_timeout, self.settings.soffice_path)
            method = "libreoffice"
        return Outcome(output, f"Successfully converted PDF to {target.upper()}",
                       {"pageCount": page_count, "method": method})

    def _to_office(self, job):
        upload = job.pdf_upload()
        return self._pdf_to_office(job, upload, "pdf", job.options.to_type)

    def _convert_images(self, job):
        if not job.uploads:
            raise ValidationError("No files uploaded.")
        output = job.output_file(job.uploads[0].stem, "images", ".pdf")
        count, skipped = pdf_operations.images_to_pdf(
            [(upload.path, upload.display_name) for upload in job.uploads], output.path)
        return Outcome(output, f"Successfully converted {count} images to PDF",
                       {"pageCount": count, "skipped": len(skipped), "skippedFiles": skipped})

    # --- Page model operations ---

    def _merge(self, job):
        uploads = job.uploads
        if len(uploads) < 2:
            raise ValidationError("At least 2 PDF files are required for merging.")
        if len(uploads) > self.settings.max_merge_files:
            raise ValidationError(f"Maximum {self.settings.max_merge_files} files allowed for merging.")
        for upload in uploads:
            require_pdf(upload, "All files must be PDF format.")

        documents, warnings = pdf_operations.load_documents(
            [(upload.path, upload.display_name) for upload in uploads])
        try:
            with pdf_operations.merge(documents) as merged:
                output = job.output_file(uploads[0].stem, "merged", ".pdf")
                merged.save(output.path)
                page_count = merged.page_count
        finally:
            for document in documents:
                document.close()

        return Outcome(output, f"Successfully merged {len(documents)} PDF files",
                       {"pageCount": page_count, "mergedFiles": len(documents),
                        "skipped": len(warnings), "warnings": warnings})

    def _split(self, job):
        upload = job.pdf_upload()
        work = job.work_dir("split")
        names = []
        with PageDocument.open(upload.path, upload.display_name) as document:
            for number, part in enumerate(pdf_operations.split(document), start=1):
                name = f"page_{number}.pdf"
                with part:
                    part.save(work.path / name)
                names.append(name)
        if not names:
            raise NoPagesProcessed("The PDF has no pages to split.")

        output = job.output_file(upload.stem, "split", ".zip")
        _zip_files(output.path, [(work.path / name, name) for name in names])
        return Outcome(output, f"Successfully split PDF into {len(names)} pages",
                       {"pageCount": len(names), "files": names})

    def _reorder(self, job):
        upload = job.pdf_upload()
        with PageDocument.open(upload.path, upload.display_name) as document:
            with pdf_operations.reorder(document, job.options.page_order) as reordered:
                output = job.output_file(upload.stem, "reordered", ".pdf")
                reordered.save(output.path)
                page_count = reordered.page_count
        return Outcome(output, "PDF pages reordered successfully", {"pageCount": page_count})

    def _watermark(self, job):
        upload = job.pdf_upload()
        opts = job.options
        with PageDocument.open(upload.path, upload.display_name) as document:
            marked_doc, marked = pdf_operations.watermark(document, opts.text, opts.opacity, opts.font_size,
                                                          opts.rgb, opts.position, opts.page_range)
            with marked_doc:
                output = job.output_file(upload.stem, "watermarked", ".pdf")
                marked_doc.save(output.path)
                page_count = marked_doc.page_count
        return Outcome(output, "Watermark added successfully",
                       {"pageCount": page_count, "watermarkedPages": len(marked)})

    # --- Tool-backed PDF operations ---

    def _compress(self, job):
        upload = job.pdf_upload()
        page_count = pdf_operations.count_pages(upload.path)
        tier = quality_tier(job.options.quality)
        output = job.output_file(upload.stem, "compressed", ".pdf")
        method = converters.compress(self.tools, upload.path, output.path, tier, self.settings.tool_timeout)

        original_size = upload.path.stat().st_size
        compressed_size = output.path.stat().st_size
        reduction = (1 - compressed_size / original_size) * 100 if original_size else 0.0
        return Outcome(output, f"PDF compressed successfully ({reduction:.2f}% reduction)",
                       {"originalSize": original_size, "compressedSize": compressed_size,
                        "compressionRatio": f"{reduction:.2f}%", "quality": job.options.quality,
                        "tier": tier.name, "method": method, "pageCount": page_count})

    def _protect(self, job):
        upload = job.pdf_upload()
        output = job.output_file(upload.stem, "protected", ".pdf")
        method = converters.protect(self.tools, upload.path, output.path, job.options.password,
                                    self.settings.tool_timeout)
        return Outcome(output, "PDF protected successfully", {"method": method})

    def _unlock(self, job):
        upload = job.pdf_upload()
        output = job.output_file(upload.stem, "unlocked", ".pdf")
        method = converters.unlock(self.tools, upload.path, output.path, job.options.password,
                                   self.settings.tool_timeout)
        return Outcome(output, "PDF unlocked successfully", {"method": method})

    def _extract_images(self, job):
        upload = job.pdf_upload()
        page_count = pdf_operations.count_pages(upload.path)
        work = job.work_dir("images")
        images = converters.extract_images(self.tools, upload.path, work.path, self.settings.tool_timeout)
        if not images:
            return Outcome(None, "No images found in PDF", {"imageCount": 0, "pageCount": page_count})

        entries, described = [], []
        for number, image in enumerate(images, start=1):
            name = f"image_{number}.png"
            entries.append((image, name))
            try:
                width, height = pdf_operations.image_size(image)
            except OSError as e:
                logger.warning(f"Could not read size of extracted image {image.name}: {e}")
                width = height = None
            described.append({"fileName": name, "width": width, "height": height})

        output = job.output_file(upload.stem, "images", ".zip")
        _zip_files(output.path, entries)
        return Outcome(output, f"Extracted {len(images)} images from PDF",
                       {"imageCount": len(images), "images": described, "pageCount": page_count})

    def _ocr(self, job):
        upload = job.upload
        source_type = selector.normalize_type(upload.extension)
        if source_type != "pdf" and source_type not in selector.RASTER_TYPES:
            raise ValidationError("OCR supports PDF and image files only.")
        if source_type == "pdf":
            pdf_operations.count_pages(upload.path)

        work = job.work_dir("ocr")
        text, page_count, skipped = pdf_utils.extract_text(self.tools, upload.path, source_type, work.path,
                                                           job.options.language, self.settings.ocr_timeout)
        output = job.output_file("extracted_text", "ocr", ".txt")
        output.path.write_text(text, encoding="utf-8")
        return Outcome(output, f"Successfully extracted text from {page_count} page(s)",
                       {"text": text, "pageCount": page_count, "skipped": len(skipped),
                        "extractText": job.options.extract_text})
