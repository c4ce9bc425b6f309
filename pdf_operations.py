# Doc-Pipeline/pdf_operations.py
"""In-process PDF work: the page model (merge/split/reorder/watermark) and the
library fallbacks used when an external tool is missing.

Page-model functions take and return ``PageDocument`` objects and never touch
the filesystem except through ``PageDocument.open``/``save``; the orchestrator
decides where things are written.
"""
import io
import logging
from pathlib import Path

import fitz
from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError, FileNotDecryptedError
from PIL import Image, UnidentifiedImageError
from docx import Document
from docx.shared import Inches, Pt

from errors import ValidationError, NoPagesProcessed, IncorrectPasswordOrUnsupported

logger = logging.getLogger(__name__)

WATERMARK_MARGIN = 50
WATERMARK_FONT = "helv"
WATERMARK_POSITIONS = ("center", "top-left", "top-right", "bottom-left", "bottom-right")
IMAGE_PDF_RESOLUTION = 72.0


# --- Page model ---

class PageDocument:
    """A loaded PDF plus its page count. Pages are addressed by 0-based index."""

    def __init__(self, doc, name="document"):
        self.doc = doc
        self.name = name

    @classmethod
    def open(cls, path, name=None, password=""):
        """Loads a PDF from disk, raising ValidationError if it is unreadable, locked or empty."""
        path = Path(path)
        name = name or path.name
        try:
            doc = fitz.open(str(path))
        except (RuntimeError, ValueError, OSError) as e:
            raise ValidationError(f"Could not read PDF '{name}': {e}") from e

        if not doc.is_pdf:
            doc.close()
            raise ValidationError(f"File '{name}' is not a PDF document.")
        if doc.needs_pass and not doc.authenticate(password or ""):
            doc.close()
            raise ValidationError(f"PDF '{name}' is password protected.")
        if doc.page_count == 0:
            doc.close()
            raise ValidationError(f"PDF '{name}' has no pages.")
        return cls(doc, name)

    @property
    def page_count(self):
        return self.doc.page_count

    def page_text(self, index):
        return self.doc[index].get_text()

    def copy_pages(self, indices):
        """Returns a new document holding the given pages in the given order (repeats allowed)."""
        indices = list(indices)
        for index in indices:
            if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < self.page_count:
                raise ValidationError(f"Page index {index!r} is out of range for '{self.name}' "
                                      f"({self.page_count} pages).")
        out = fitz.open()
        for index in indices:
            out.insert_pdf(self.doc, from_page=index, to_page=index)
        return PageDocument(out, self.name)

    def save(self, path, **options):
        params = {"garbage": 3, "deflate": True}
        params.update(options)
        self.doc.save(str(path), **params)
        return Path(path)

    def close(self):
        self.doc.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


def count_pages(path):
    with PageDocument.open(path) as document:
        return document.page_count


def load_documents(sources):
    """Opens each ``(path, name)`` pair; unreadable or locked ones are skipped.

    Returns ``(documents, warnings)``.
    """
    documents, warnings = [], []
    for path, name in sources:
        try:
            documents.append(PageDocument.open(path, name))
        except ValidationError as e:
            logger.warning(f"Skipping '{name}' for merge: {e.message}")
            warnings.append(e.message)
    return documents, warnings


def merge(documents):
    """Concatenates all pages of every document, in input order."""
    out = fitz.open()
    for document in documents:
        out.insert_pdf(document.doc)
    if out.page_count == 0:
        out.close()
        raise NoPagesProcessed("No valid PDF files could be processed for merging.")
    logger.info(f"Merged {len(documents)} document(s) into {out.page_count} page(s).")
    return PageDocument(out, "merged")


def split(document):
    """One single-page document per page, in page order."""
    return [document.copy_pages([index]) for index in range(document.page_count)]


def reorder(document, order):
    """Copies pages in exactly the given 1-based order. Every entry is validated first."""
    order = list(order)
    if not order:
        raise ValidationError("Page order array is required.")
    for position, page in enumerate(order, start=1):
        if isinstance(page, bool) or not isinstance(page, int):
            raise ValidationError(f"Page order entry {position} ({page!r}) is not a page number.")
        if not 1 <= page <= document.page_count:
            raise ValidationError(f"Page {page} does not exist (document has {document.page_count} pages).")
    return document.copy_pages([page - 1 for page in order])


# --- Watermark ---

def resolve_page_range(page_range, page_count):
    """Resolves "all", "2", "1-3", "1,3,5-7" or "8-" into sorted 1-based page numbers.

    Pages outside the document are dropped silently; non-numeric tokens raise ValidationError.
    """
    range_text = (page_range or "").strip().lower()
    if range_text in ("", "all"):
        return list(range(1, page_count + 1))

    pages = set()
    for token in range_text.split(","):
        token = token.strip()
        if not token:
            continue
        try:
            if "-" in token:
                start_str, end_str = token.split("-", 1)
                start = int(start_str) if start_str.strip() else 1
                end = int(end_str) if end_str.strip() else page_count
            else:
                start = end = int(token)
        except ValueError:
            raise ValidationError(f"Invalid page range token: '{token}'.") from None
        # Clamp before expanding.
        pages.update(range(max(start, 1), min(end, page_count) + 1))
    return sorted(pages)


def watermark_anchor(rect, position, text_width, font_size, margin=WATERMARK_MARGIN):
    """Baseline start point of the text for one of the five anchor positions."""
    if position == "top-left":
        x, y = margin, margin + font_size
    elif position == "top-right":
        x, y = rect.width - margin - text_width, margin + font_size
    elif position == "bottom-left":
        x, y = margin, rect.height - margin
    elif position == "bottom-right":
        x, y = rect.width - margin - text_width, rect.height - margin
    else:
        x, y = (rect.width - text_width) / 2, (rect.height + font_size * 0.7) / 2
    return fitz.Point(rect.x0 + x, rect.y0 + y)


def watermark(document, text, opacity=0.5, font_size=24, color=(0, 0, 0), position="center", page_range="all"):
    """Draws ``text`` on each page of the resolved range. Returns ``(new_document, marked_pages)``."""
    if position not in WATERMARK_POSITIONS:
        raise ValidationError(f"Invalid position '{position}'. Use one of: {', '.join(WATERMARK_POSITIONS)}.")
    marked = resolve_page_range(page_range, document.page_count)

    out = document.copy_pages(range(document.page_count))
    text_width = fitz.get_text_length(text, fontname=WATERMARK_FONT, fontsize=font_size)
    for page_number in marked:
        page = out.doc[page_number - 1]
        point = watermark_anchor(page.rect, position, text_width, font_size) * page.derotation_matrix
        page.insert_text(point, text, fontsize=font_size, fontname=WATERMARK_FONT, color=color,
                         fill_opacity=opacity, rotate=page.rotation)
    logger.info(f"Watermarked {len(marked)} of {document.page_count} page(s) at '{position}'.")
    return out, marked


# --- Images ---

def _to_rgb(img):
    """Flattens alpha onto white; other modes are converted straight to RGB."""
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def images_to_pdf(sources, output_path, strict=False):
    """Embeds each ``(path, name)`` image as one page sized to the image at 72 dpi.

    Unreadable images are skipped (or raise ValidationError when ``strict``).
    Returns ``(page_count, skipped_names)``.
    """
    pages, skipped = [], []
    try:
        for path, name in sources:
            try:
                with Image.open(path) as img:
                    img.load()
                    pages.append(_to_rgb(img).copy())
            except (UnidentifiedImageError, OSError, ValueError) as e:
                if strict:
                    raise ValidationError(f"Could not read image '{name}': {e}") from e
                logger.warning(f"Skipping file {name} due to error opening or converting image: {e}")
                skipped.append(name)

        if not pages:
            raise NoPagesProcessed("No valid images found or processed.")

        logger.info(f"Converting {len(pages)} image(s) to PDF: {output_path}")
        pages[0].save(str(output_path), "PDF", resolution=IMAGE_PDF_RESOLUTION,
                      save_all=True, append_images=pages[1:])
        return len(pages), skipped
    finally:
        for img in pages:
            img.close()


RASTER_FORMATS = {"jpg": "JPEG", "png": "PNG", "webp": "WEBP"}


def convert_raster(source_path, output_path, target, quality=90):
    """Re-encodes a raster image; JPEG output gets its alpha flattened onto white."""
    pil_format = RASTER_FORMATS.get(target)
    if pil_format is None:
        raise ValidationError(f"Unsupported image target '{target}'.")
    try:
        with Image.open(source_path) as img:
            img.load()
            if pil_format == "JPEG":
                img = _to_rgb(img)
                img.save(str(output_path), pil_format, quality=quality)
            else:
                img.save(str(output_path), pil_format)
            return img.size
    except (UnidentifiedImageError, OSError) as e:
        raise ValidationError(f"Could not convert image: {e}") from e


def image_size(path):
    with Image.open(path) as img:
        return img.size


# --- Library fallbacks for tool-backed operations ---

def compress_in_process(source_path, output_path, tier):
    """Rewrites the PDF with PyMuPDF; cleanup gets more aggressive with the tier."""
    with PageDocument.open(source_path) as document:
        params = {"garbage": min(4, 1 + tier.level), "deflate": True}
        if tier.level >= 2:
            params.update(deflate_images=True, deflate_fonts=True)
        logger.info(f"Compressing '{document.name}' in-process ({tier.name}): {params}")
        document.save(output_path, **params)
    return Path(output_path)


def pdf_to_docx_in_process(source_path, output_path):
    """
    Basic PDF-to-Word conversion: text spans and embedded images, ordered top to bottom.
    Complex formatting (tables, columns, vector graphics) is lost.
    """
    word_doc = Document()
    style = word_doc.styles['Normal']
    style.font.name = 'Calibri'
    style.font.size = Pt(11)

    with PageDocument.open(source_path) as document:
        doc = document.doc
        logger.info(f"Starting basic PDF-to-Word conversion for '{document.name}'...")
        for page_num in range(doc.page_count):
            page = doc.load_page(page_num)
            items = []
            for block in page.get_text("dict")["blocks"]:
                if block['type'] != 0:
                    continue
                for line in block["lines"]:
                    for span in line["spans"]:
                        items.append({'type': 'text', 'bbox': span['bbox'], 'text': span['text']})

            for img_info in page.get_images(full=True):
                base_image = doc.extract_image(img_info[0])
                if not base_image:
                    continue
                try:
                    bbox = page.get_image_bbox(img_info)
                except ValueError as bbox_err:
                    logger.debug(f"Image on page {page_num + 1} is not placed on the page: {bbox_err}")
                    continue
                if bbox.is_empty or bbox.is_infinite:
                    continue
                items.append({'type': 'image', 'bbox': tuple(bbox), 'bytes': base_image["image"]})

            items.sort(key=lambda item: item['bbox'][1])

            for item in items:
                if item['type'] == 'text':
                    word_doc.add_paragraph(item['text'])
                    continue
                # Scale relative to a ~6 inch usable Word page width.
                width_ratio = (item['bbox'][2] - item['bbox'][0]) / page.rect.width
                width_inches = max(0.5, min(6.0 * width_ratio, 6.0))
                try:
                    word_doc.add_picture(io.BytesIO(item['bytes']), width=Inches(width_inches))
                except Exception as img_err:
                    logger.warning(f"Could not add image from page {page_num + 1} to Word doc: {img_err}")
                    word_doc.add_paragraph("[Image could not be converted]")

            if page_num < doc.page_count - 1:
                word_doc.add_page_break()

    word_doc.save(str(output_path))
    logger.info(f"Basic PDF-to-Word conversion saved to: {output_path}")
    return Path(output_path)


def is_encrypted(path):
    try:
        return PdfReader(str(path)).is_encrypted
    except (PdfReadError, OSError, ValueError) as e:
        raise ValidationError(f"Could not read PDF: {e}") from e


def encrypt_in_process(source_path, output_path, password):
    """Encrypts with pypdf, AES-256 (needs the 'cryptography' package)."""
    reader = PdfReader(str(source_path))
    if reader.is_encrypted:
        raise IncorrectPasswordOrUnsupported("Input PDF is already password protected.")
    writer = PdfWriter()
    for page in reader.pages:
        writer.add_page(page)
    logger.info("Encrypting PDF in-process with AES-256.")
    writer.encrypt(user_password=password, owner_password=password, algorithm="AES-256")
    with open(output_path, "wb") as f_out:
        writer.write(f_out)
    return Path(output_path)


def decrypt_in_process(source_path, output_path, password):
    reader = PdfReader(str(source_path))
    if not reader.is_encrypted:
        raise IncorrectPasswordOrUnsupported("PDF is not password protected.")
    try:
        if reader.decrypt(password) == 0:
            raise IncorrectPasswordOrUnsupported("Incorrect password provided.")
    except FileNotDecryptedError as e:
        raise IncorrectPasswordOrUnsupported("Incorrect password provided.") from e
    writer = PdfWriter(clone_from=reader)
    with open(output_path, "wb") as f_out:
        writer.write(f_out)
    logger.info(f"Unlocked PDF saved to: {output_path}")
    return Path(output_path)
