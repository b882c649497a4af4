"""
Photo reference resolution for report embedding.

Turns a photo reference into something the HTML template can put straight
into an <img src>: inline data URIs and remote URLs pass through untouched,
local files are read, checked with Pillow and base64-encoded.

A bad photo must never stop a report from being produced, so resolve_image()
does not raise: when a file cannot be read or does not decode as an image
it logs and returns None, and the template shows "No disponible" for that slot.
"""

import asyncio
import base64
import binascii
import io
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

from PIL import Image

logger = logging.getLogger("pooldoc.image_codec")

DATA_URI_PREFIX = "data:image"
REMOTE_PREFIXES = ("http://", "https://")


def mime_type_for(ref: str) -> str:
    """png -> image/png, anything else -> image/jpeg."""
    extension = ref.rsplit(".", 1)[-1].lower() if "." in ref else ""
    return "image/png" if extension == "png" else "image/jpeg"


def to_data_uri(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def data_uri_bytes(uri: str) -> Optional[bytes]:
    """Payload of a base64 data URI, or None when it is not one."""
    header, sep, payload = uri.partition(",")
    if not sep or not header.endswith(";base64"):
        return None
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        return None


def image_problem(data: bytes) -> Optional[str]:
    """Why these bytes cannot be embedded as an image, or None if they can."""
    if not data:
        return "empty"
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
    except Exception as exc:
        return f"{type(exc).__name__}: {exc}"
    return None


def local_path_for(ref: str) -> Path:
    """Accept plain paths and file:// URIs."""
    if ref.startswith("file://"):
        return Path(unquote(urlparse(ref).path))
    return Path(ref).expanduser()


async def resolve_image(ref: Optional[str]) -> Optional[str]:
    """Resolve a photo reference into an embeddable src, or None.

    Args:
        ref: Data URI, http(s) URL, local path or file:// URI.

    Returns:
        The embeddable representation, or None for no photo / unusable photo.
    """
    if not ref:
        return None

    if ref.startswith(DATA_URI_PREFIX):
        return ref

    if ref.startswith(REMOTE_PREFIXES):
        logger.debug("Remote image kept by reference: %s", ref)
        return ref

    path = local_path_for(ref)
    try:
        data = await asyncio.to_thread(path.read_bytes)
    except (OSError, ValueError) as e:
        logger.warning("Photo unreadable, slot degraded: %s (%s)", ref, e)
        return None

    problem = await asyncio.to_thread(image_problem, data)
    if problem:
        logger.warning("Photo is not a usable image, slot degraded: %s (%s)", ref, problem)
        return None

    encoded = to_data_uri(data, mime_type_for(path.name))
    logger.debug("Photo embedded: %s (%d bytes)", path.name, len(data))
    return encoded
