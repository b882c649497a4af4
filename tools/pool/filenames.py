"""Filesystem- and share-safe names for report documents."""

import re
from typing import Final

from tools.pool.models import PDF_EXTENSION

_UNSAFE_CHAR_RE: Final[re.Pattern[str]] = re.compile(r"[^A-Za-z0-9_-]")

DEFAULT_NUMBER: Final[str] = "SinNumero"
DEFAULT_PROJECT: Final[str] = "SinProyecto"
DISPLAY_PREFIX: Final[str] = "Reporte_"


def sanitize_component(value: str | None, default: str = "") -> str:
    """Drop "#" and turn every other character outside [A-Za-z0-9_-] into "_".

    The result only contains allowed characters, so sanitizing twice is a
    no-op.
    """
    cleaned = _UNSAFE_CHAR_RE.sub("_", (value or "").replace("#", ""))
    return cleaned or default


def document_filename(report_number: str | None, project_name: str | None) -> str:
    """``#001`` + ``Pool A`` -> ``001_Pool_A.pdf``"""
    number = sanitize_component(report_number, DEFAULT_NUMBER)
    project = sanitize_component(project_name, DEFAULT_PROJECT)
    return f"{number}_{project}{PDF_EXTENSION}"


def display_filename(report_number: str | None, project_name: str | None) -> str:
    """Name the recipient sees on the shared attachment."""
    return f"{DISPLAY_PREFIX}{document_filename(report_number, project_name)}"


__all__ = ["sanitize_component", "document_filename", "display_filename"]
