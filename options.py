# Doc-Pipeline/options.py
"""Typed per-operation options parsed from raw form fields.

Absent fields take the documented defaults; present-but-malformed fields are
rejected with ValidationError instead of being silently defaulted.
"""
import re
import json
from dataclasses import dataclass

from errors import ValidationError
from tool_adapter import DEFAULT_QUALITY, clamp_quality
from pdf_operations import WATERMARK_POSITIONS

HEX_COLOR_RE = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")
LANGUAGE_RE = re.compile(r"^[A-Za-z_]+(\+[A-Za-z_]+)*$")
PAGE_NUMBER_RE = re.compile(r"-?[0-9]+", re.ASCII)
OFFICE_TARGETS = ("docx", "xlsx", "pptx")


def _field(form, name):
    """Returns the stripped field value, or None when absent/blank."""
    if form is None:
        return None
    value = form.get(name)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _int_field(form, name, default):
    value = _field(form, name)
    if value is None:
        return default
    try:
        return int(float(value)) if "." in value else int(value)
    except (ValueError, OverflowError):
        raise ValidationError(f"'{name}' must be a number, got '{value}'.") from None


def _float_field(form, name, default):
    value = _field(form, name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValidationError(f"'{name}' must be a number, got '{value}'.") from None


def _bool_field(form, name, default=False):
    value = _field(form, name)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def parse_quality(form, default=DEFAULT_QUALITY):
    return clamp_quality(_int_field(form, "quality", default))


def parse_hex_color(value):
    """'#f00' / '#ff0000' -> (1.0, 0.0, 0.0)."""
    match = HEX_COLOR_RE.match(value or "")
    if not match:
        raise ValidationError(f"Invalid color '{value}'. Use a hex value such as #000000.")
    digits = match.group(1)
    if len(digits) == 3:
        digits = "".join(c * 2 for c in digits)
    return tuple(int(digits[i:i + 2], 16) / 255 for i in (0, 2, 4))


def parse_page_order(raw):
    """JSON array of 1-based page numbers. Integer strings ("3") are accepted."""
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise ValidationError("Page order array is required.")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            raise ValidationError("Page order must be a JSON array of page numbers.") from None
    if not isinstance(raw, list) or not raw:
        raise ValidationError("Page order array is required.")

    order = []
    for entry in raw:
        if isinstance(entry, str) and PAGE_NUMBER_RE.fullmatch(entry.strip()):
            entry = int(entry)
        if isinstance(entry, bool) or not isinstance(entry, int):
            raise ValidationError(f"Invalid page number in page order: {entry!r}.")
        order.append(entry)
    return tuple(order)


@dataclass(frozen=True)
class ConvertOptions:
    to_type: str
    from_type: str | None = None
    quality: int = DEFAULT_QUALITY

    @classmethod
    def from_form(cls, form):
        to_type = _field(form, "toType")
        if to_type is None:
            raise ValidationError("Target type (toType) is required.")
        return cls(to_type=to_type.lower(), from_type=_field(form, "fromType"), quality=parse_quality(form))


@dataclass(frozen=True)
class ImagesToPdfOptions:
    to_type: str = "pdf"

    @classmethod
    def from_form(cls, form):
        to_type = (_field(form, "toType") or "pdf").lower()
        if to_type != "pdf":
            raise ValidationError("Batch image conversion only supports PDF output.")
        return cls(to_type)


@dataclass(frozen=True)
class CompressOptions:
    quality: int = DEFAULT_QUALITY

    @classmethod
    def from_form(cls, form):
        return cls(quality=parse_quality(form))


@dataclass(frozen=True)
class ReorderOptions:
    page_order: tuple

    @classmethod
    def from_form(cls, form):
        return cls(page_order=parse_page_order(form.get("pageOrder") if form is not None else None))


@dataclass(frozen=True)
class WatermarkOptions:
    text: str = "WATERMARK"
    opacity: float = 0.5
    font_size: int = 24
    color: str = "#000000"
    position: str = "center"
    page_range: str = "all"

    @property
    def rgb(self):
        return parse_hex_color(self.color)

    @classmethod
    def from_form(cls, form):
        opacity = _float_field(form, "opacity", cls.opacity)
        if not 0 <= opacity <= 1:
            raise ValidationError(f"Opacity must be between 0 and 1, got {opacity}.")
        font_size = _int_field(form, "fontSize", cls.font_size)
        if font_size <= 0:
            raise ValidationError(f"Font size must be positive, got {font_size}.")
        color = _field(form, "color") or cls.color
        parse_hex_color(color)
        position = (_field(form, "position") or cls.position).lower()
        if position not in WATERMARK_POSITIONS:
            raise ValidationError(f"Invalid position '{position}'. Use one of: {', '.join(WATERMARK_POSITIONS)}.")
        return cls(
            text=_field(form, "text") or cls.text,
            opacity=opacity,
            font_size=font_size,
            color=color if color.startswith("#") else f"#{color}",
            position=position,
            page_range=_field(form, "pageRange") or cls.page_range,
        )


@dataclass(frozen=True)
class PasswordOptions:
    password: str

    @classmethod
    def from_form(cls, form):
        # Passwords are taken verbatim: surrounding spaces are significant.
        password = form.get("password") if form is not None else None
        if not password:
            raise ValidationError("Password is required.")
        return cls(password=str(password))


@dataclass(frozen=True)
class OfficeOptions:
    to_type: str = "docx"

    @classmethod
    def from_form(cls, form):
        to_type = (_field(form, "toType") or cls.to_type).lower()
        if to_type not in OFFICE_TARGETS:
            raise ValidationError(f"Invalid format '{to_type}'. Supported: {', '.join(OFFICE_TARGETS)}.")
        return cls(to_type)


@dataclass(frozen=True)
class OcrOptions:
    extract_text: bool = False
    language: str = "eng"

    @classmethod
    def from_form(cls, form):
        language = _field(form, "language") or cls.language
        if not LANGUAGE_RE.match(language):
            raise ValidationError(f"Invalid OCR language '{language}'.")
        return cls(extract_text=_bool_field(form, "extractText"), language=language)


@dataclass(frozen=True)
class NoOptions:
    @classmethod
    def from_form(cls, form):
        return cls()
