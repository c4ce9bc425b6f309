# Doc-Pipeline/converters.py
"""Argument mappings and fallback chains for the external tools.

Every function here takes a ``ToolAdapter`` plus explicit input/output paths.
Output and scratch locations are handed in by the caller (already tracked), so
nothing in this module needs to clean up after itself.
"""
import shutil
import logging
from pathlib import Path

from pypdf.errors import PyPdfError

import pdf_operations
from errors import (ToolChainExhausted, ToolOutputMissing, ToolTimeout, ToolError, ValidationError,
                    IncorrectPasswordOrUnsupported)
from tool_adapter import ToolInvocation, ToolAttempt, numbered_files

logger = logging.getLogger(__name__)

OFFICE_EXECUTABLES = ("soffice", "libreoffice")
GS_BATCH_FLAGS = ("-dNOPAUSE", "-dQUIET", "-dBATCH", "-dSAFER")
QPDF_OK_CODES = (0, 3)  # 3 = succeeded with warnings

# LibreOffice --convert-to target and import filter per output type when the source is a PDF.
PDF_IMPORT_FILTERS = {
    "docx": ("docx:MS Word 2007 XML", "writer_pdf_import"),
    "pptx": ("pptx", "impress_pdf_import"),
    "xlsx": ("xlsx", None),
}
RASTER_DEFAULT_DPI = 300


# --- LibreOffice ---

def office_executables(soffice_path=None):
    if soffice_path:
        return (soffice_path, *OFFICE_EXECUTABLES)
    return OFFICE_EXECUTABLES


def office_convert(tools, source, output, work_dir, target="pdf", timeout=60, soffice_path=None):
    """Converts ``source`` with LibreOffice into ``output``.

    ``work_dir`` must be a private, tracked scratch directory: it holds the
    per-request user profile and LibreOffice's output directory, so parallel
    conversions never share a profile lock.
    """
    source = Path(source).resolve()
    work_dir = Path(work_dir).resolve()
    out_dir = work_dir / "out"
    profile_dir = work_dir / "profile"
    out_dir.mkdir(exist_ok=True)
    profile_dir.mkdir(exist_ok=True)

    convert_to, infilter = target, None
    if source.suffix.lower() == ".pdf":
        convert_to, infilter = PDF_IMPORT_FILTERS.get(target, (target, None))
    produced = out_dir / f"{source.stem}.{target}"

    args = ["--headless", "--norestore", "--nolockcheck",
            f"-env:UserInstallation={profile_dir.as_uri()}"]
    if infilter:
        args.append(f"--infilter={infilter}")
    args += ["--convert-to", convert_to, "--outdir", str(out_dir), str(source)]

    invocations = [
        ToolInvocation(f"LibreOffice ({Path(exe).name})", exe, tuple(args), timeout, expected_output=produced)
        for exe in office_executables(soffice_path)
    ]
    tools.run_chain(invocations)
    shutil.move(str(produced), str(output))
    logger.info(f"LibreOffice converted '{source.name}' to {target}: {output}")
    return Path(output)


def pdf_to_docx(tools, source, output, work_dir, timeout=60, soffice_path=None):
    """LibreOffice first, python-docx extraction when every LibreOffice binary fails."""
    try:
        office_convert(tools, source, output, work_dir, "docx", timeout, soffice_path)
        return "libreoffice"
    except ToolChainExhausted as e:
        logger.warning(f"LibreOffice PDF-to-Word failed, using basic extraction: {e.message}")
    pdf_operations.pdf_to_docx_in_process(source, output)
    return "python-docx"


# --- Rasterization ---

def rasterize_first_page(tools, source, output, tier, timeout=120):
    """Renders page 1 of a PDF to ``output`` (.jpg or .png) at the tier's resolution."""
    output = Path(output)
    dpi = tier.resolution or RASTER_DEFAULT_DPI
    as_png = output.suffix.lower() == ".png"

    pdftoppm_args = ["-f", "1", "-l", "1", "-singlefile", "-r", str(dpi)]
    if as_png:
        pdftoppm_args.append("-png")
    else:
        pdftoppm_args += ["-jpeg", "-jpegopt", f"quality={tier.jpeg_quality}"]
    pdftoppm_args += [str(source), str(output.with_suffix(""))]

    gs_args = [*GS_BATCH_FLAGS, "-sDEVICE=png16m" if as_png else "-sDEVICE=jpeg", f"-r{dpi}",
               "-dFirstPage=1", "-dLastPage=1", f"-sOutputFile={output}", str(source)]
    if not as_png:
        gs_args.insert(-2, f"-dJPEGQ={tier.jpeg_quality}")

    tools.run_chain([
        ToolInvocation("pdftoppm", "pdftoppm", tuple(pdftoppm_args), timeout, expected_output=output),
        ToolInvocation("Ghostscript (rasterize)", "gs", tuple(gs_args), timeout, expected_output=output),
    ])
    return output


def rasterize_pages(tools, source, out_dir, dpi=RASTER_DEFAULT_DPI, timeout=120):
    """Renders every page to PNG under ``out_dir``; returns the images in page order."""
    out_dir = Path(out_dir)
    pdftoppm_dir, gs_dir = out_dir / "pdftoppm", out_dir / "gs"
    pdftoppm_dir.mkdir(exist_ok=True)
    gs_dir.mkdir(exist_ok=True)
    chain = [
        (ToolInvocation("pdftoppm", "pdftoppm", ("-png", "-r", str(dpi), str(source), str(pdftoppm_dir / "page")),
                        timeout), pdftoppm_dir),
        (ToolInvocation("Ghostscript (rasterize)", "gs",
                        (*GS_BATCH_FLAGS, "-sDEVICE=png16m", f"-r{dpi}",
                         f"-sOutputFile={gs_dir / 'page-%d.png'}", str(source)), timeout), gs_dir),
    ]
    attempts = []
    for invocation, target_dir in chain:
        # Directory output: an attempt only counts if it left page images behind.
        attempt = tools.attempt(invocation)
        if isinstance(attempt.error, ToolTimeout):
            raise attempt.error
        if attempt.ok:
            images = numbered_files(target_dir, "page-*.png")
            if images:
                return images
            attempt = ToolAttempt(invocation, error=ToolOutputMissing(
                f"{invocation.label} produced no page images.", tool=invocation.label))
        logger.warning(f"{invocation.label} could not rasterize pages: {attempt.error.message}")
        attempts.append(attempt)
    raise ToolChainExhausted("All rasterizers failed.", attempts)


# --- Compression ---

def compress(tools, source, output, tier, timeout=120):
    """Ghostscript, then qpdf, then the PyMuPDF rewrite. Returns the method that produced ``output``.

    The result is never larger than the input: if every method grows the file,
    the input bytes are kept as-is.
    """
    gs_args = ["-sDEVICE=pdfwrite", "-dCompatibilityLevel=1.4", f"-dPDFSETTINGS={tier.pdf_settings}",
               "-dDetectDuplicateImages=true", "-dCompressFonts=true", "-dSubsetFonts=true"]
    if tier.resolution:
        for kind in ("Color", "Gray", "Mono"):
            gs_args += [f"-dDownsample{kind}Images=true", f"-d{kind}ImageResolution={tier.resolution}"]
    gs_args += [*GS_BATCH_FLAGS, f"-sOutputFile={output}", str(source)]

    qpdf_args = ["--object-streams=generate", "--compress-streams=y", "--recompress-flate",
                 "--compression-level=9", str(source), str(output)]

    try:
        outcome = tools.run_chain([
            ToolInvocation("Ghostscript (compress)", "gs", tuple(gs_args), timeout, expected_output=Path(output)),
            ToolInvocation("qpdf (compress)", "qpdf", tuple(qpdf_args), timeout, expected_output=Path(output),
                           ok_returncodes=QPDF_OK_CODES),
        ])
        method = outcome.invocation.executable
    except ToolChainExhausted as e:
        logger.warning(f"No compression tool succeeded, falling back to PyMuPDF: {e.message}")
        pdf_operations.compress_in_process(source, output, tier)
        method = "pymupdf"

    if Path(output).stat().st_size > Path(source).stat().st_size:
        logger.info(f"{method} output is larger than the input; keeping the original bytes.")
        shutil.copyfile(source, output)
        method = "original"
    return method


# --- Encryption ---

def protect(tools, source, output, password, timeout=120):
    """Encrypts with qpdf (AES-256), then Ghostscript, then pypdf."""
    if pdf_operations.is_encrypted(source):
        raise IncorrectPasswordOrUnsupported("Input PDF is already password protected.")

    qpdf_args = ("--encrypt", password, password, "256", "--", str(source), str(output))
    gs_args = ("-sDEVICE=pdfwrite", "-dCompatibilityLevel=1.4", f"-sOwnerPassword={password}",
               f"-sUserPassword={password}", "-dEncryptionR=3", "-dKeyLength=128",
               *GS_BATCH_FLAGS, f"-sOutputFile={output}", str(source))
    try:
        outcome = tools.run_chain([
            ToolInvocation("qpdf (encrypt)", "qpdf", qpdf_args, timeout, expected_output=Path(output),
                           ok_returncodes=QPDF_OK_CODES, secrets=(password,)),
            ToolInvocation("Ghostscript (encrypt)", "gs", gs_args, timeout, expected_output=Path(output),
                           secrets=(password,)),
        ])
        return outcome.invocation.executable
    except ToolChainExhausted as e:
        logger.warning(f"No encryption tool succeeded, falling back to pypdf: {e.message}")

    try:
        pdf_operations.encrypt_in_process(source, output, password)
    except (PyPdfError, OSError, ValueError) as e:
        logger.error(f"In-process encryption failed: {e}", exc_info=True)
        raise IncorrectPasswordOrUnsupported("PDF could not be password protected.") from e
    return "pypdf"


def unlock(tools, source, output, password, timeout=120):
    """Decrypts with qpdf, then pypdf. Every failure surfaces as IncorrectPasswordOrUnsupported."""
    try:
        if not pdf_operations.is_encrypted(source):
            raise IncorrectPasswordOrUnsupported("PDF is not password protected.")
    except ValidationError as e:
        raise IncorrectPasswordOrUnsupported(e.message) from e

    qpdf = ToolInvocation("qpdf (decrypt)", "qpdf", (f"--password={password}", "--decrypt", str(source), str(output)),
                          timeout, expected_output=Path(output), ok_returncodes=QPDF_OK_CODES, secrets=(password,))
    try:
        tools.invoke(qpdf)
        return "qpdf"
    except ToolError as e:
        logger.warning(f"qpdf could not decrypt ({e.kind}), trying pypdf: {e.message}")

    try:
        pdf_operations.decrypt_in_process(source, output, password)
    except IncorrectPasswordOrUnsupported:
        raise
    except (PyPdfError, OSError, ValueError) as e:
        logger.warning(f"pypdf could not decrypt: {e}")
        raise IncorrectPasswordOrUnsupported("Incorrect password or unsupported encryption.") from e
    return "pypdf"


# --- Images and OCR ---

def extract_images(tools, source, out_dir, timeout=120):
    """Runs ``pdfimages -png``; returns the extracted files in page order (possibly none)."""
    out_dir = Path(out_dir)
    tools.invoke(ToolInvocation("pdfimages", "pdfimages", ("-png", str(source), str(out_dir / "img")), timeout))
    return numbered_files(out_dir, "img-*.png")


def ocr_image(tools, image, language="eng", timeout=120):
    """OCRs one image with tesseract, returning the recognized text."""
    outcome = tools.invoke(ToolInvocation(f"tesseract ({Path(image).name})", "tesseract",
                                          (str(image), "stdout", "-l", language), timeout))
    return outcome.stdout.strip()
