# Doc-Pipeline/pdf_utils.py
import logging
from pathlib import Path

import converters
from errors import ToolError, ToolUnavailable, NoPagesProcessed

logger = logging.getLogger(__name__)

OCR_DPI = 300  # Higher DPI for better OCR
PAGE_HEADER = "--- Page {} ---"


def ocr_pages(tools, images, language="eng", timeout=120):
    """
    Runs OCR over page images in order and joins the text under per-page headers.

    A page whose OCR fails gets a placeholder and is counted as skipped. A
    missing OCR engine stops the whole run, since every other page would fail
    the same way.

    Returns:
        tuple: (text, skipped_page_numbers)
    """
    parts, skipped = [], []
    for page_number, image in enumerate(images, start=1):
        logger.debug(f"Performing OCR on page {page_number}...")
        try:
            page_text = converters.ocr_image(tools, image, language, timeout)
        except ToolUnavailable:
            raise
        except ToolError as ocr_err:
            logger.warning(f"Error during OCR on page {page_number}: {ocr_err.message}. Skipping page.")
            skipped.append(page_number)
            page_text = f"[OCR Error on page {page_number}]"
        parts.append(f"{PAGE_HEADER.format(page_number)}\n{page_text}")

    if images and len(skipped) == len(images):
        raise NoPagesProcessed("OCR failed on every page of the document.")
    return "\n\n".join(parts).strip(), skipped


def extract_text(tools, source, source_type, work_dir, language="eng", timeout=120):
    """
    Extracts text from a PDF (rasterized page by page) or a single raster image.

    Returns:
        tuple: (text, page_count, skipped_page_numbers)
    """
    if source_type == "pdf":
        images = converters.rasterize_pages(tools, source, work_dir, dpi=OCR_DPI, timeout=timeout)
        logger.info(f"Converted PDF to {len(images)} images for OCR.")
    else:
        images = [Path(source)]

    text, skipped = ocr_pages(tools, images, language, timeout)
    logger.info(f"OCR process completed. Total characters extracted: {len(text)}")
    return text, len(images), skipped
