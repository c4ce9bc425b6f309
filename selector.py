# Doc-Pipeline/selector.py
"""Decides how a (source type, target type) conversion is carried out.

The selector only looks at names: it never opens the uploaded file.
"""
from dataclasses import dataclass
from pathlib import Path

from errors import UnsupportedConversion, ValidationError

TYPE_ALIASES = {"jpeg": "jpg", "tif": "tiff", "htm": "html"}
OFFICE_TYPES = ("doc", "docx", "xls", "xlsx", "ppt", "pptx", "odt", "ods", "odp", "rtf")
RASTER_TYPES = ("jpg", "png", "gif", "bmp", "tiff", "webp")
RASTER_TARGETS = ("jpg", "png", "webp")
PDF_OFFICE_TARGETS = ("docx", "xlsx", "pptx")

LIBRARY = "library"
TOOL_CHAIN = "tool_chain"


@dataclass(frozen=True)
class Capability:
    source: str
    target: str
    operation: str      # orchestrator handler name
    kind: str           # LIBRARY or TOOL_CHAIN
    description: str


def _build_capabilities():
    table = {}

    def add(source, target, operation, kind, description):
        table[(source, target)] = Capability(source, target, operation, kind, description)

    for source in OFFICE_TYPES:
        add(source, "pdf", "office_to_pdf", TOOL_CHAIN, "soffice -> libreoffice")
    for source in RASTER_TYPES:
        add(source, "pdf", "image_to_pdf", LIBRARY, "Pillow page embedding")
        for target in RASTER_TARGETS:
            if target != source:
                add(source, target, "raster_to_raster", LIBRARY, "Pillow re-encode")
    for target in ("jpg", "png"):
        add("pdf", target, "pdf_to_image", TOOL_CHAIN, "pdftoppm -> gs (first page)")
    add("pdf", "docx", "pdf_to_office", TOOL_CHAIN, "LibreOffice -> python-docx")
    for target in ("xlsx", "pptx"):
        add("pdf", target, "pdf_to_office", TOOL_CHAIN, "LibreOffice")
    return table


CAPABILITIES = _build_capabilities()


def normalize_type(value):
    """'.JPEG' -> 'jpg'. Empty values and the 'unknown' hint become None."""
    if value is None:
        return None
    value = str(value).strip().lower().lstrip(".")
    if not value or value == "unknown":
        return None
    return TYPE_ALIASES.get(value, value)


def resolve_source_type(hint, original_name=None, stored_path=None):
    """Explicit hint first, then the original file name's extension, then the stored path's."""
    for candidate in (hint, Path(original_name or "").suffix, Path(stored_path or "").suffix):
        source_type = normalize_type(candidate)
        if source_type:
            return source_type
    raise ValidationError("Could not determine the source file type. Provide fromType.")


def supported_conversions():
    return sorted(f"{source}->{target}" for source, target in CAPABILITIES)


def select(source_type, target_type):
    """Returns the Capability for the pair or raises UnsupportedConversion."""
    source_type, target_type = normalize_type(source_type), normalize_type(target_type)
    capability = CAPABILITIES.get((source_type, target_type))
    if capability is None:
        raise UnsupportedConversion(
            f"Unsupported conversion: {source_type} to {target_type}.",
            details={"supported": supported_conversions()},
        )
    return capability
