"""Inline attachment codec.

Attachments captured before a sync carry their bytes inline as RFC 2397
``data:`` URLs, e.g. ``data:image/png;base64,iVBORw0...``.
"""

import base64
import binascii
from typing import Tuple
from urllib.parse import unquote_to_bytes

DATA_URL_PREFIX = "data:"
DEFAULT_MIME_TYPE = "application/octet-stream"


def is_inline_reference(ref: str) -> bool:
    """Return True if ``ref`` is an inline ``data:`` URL."""
    return isinstance(ref, str) and ref.startswith(DATA_URL_PREFIX)


def encode_inline_payload(data: bytes, mime_type: str) -> str:
    """
    Encode raw bytes as a base64 ``data:`` URL.

    Args:
        data: Attachment bytes
        mime_type: MIME type recorded in the URL header

    Returns:
        Inline reference string
    """
    encoded = base64.b64encode(data).decode("ascii")
    return f"{DATA_URL_PREFIX}{mime_type or DEFAULT_MIME_TYPE};base64,{encoded}"


def decode_inline_payload(ref: str) -> Tuple[bytes, str]:
    """
    Decode a ``data:`` URL back to its bytes and MIME type.

    Args:
        ref: Inline reference string

    Returns:
        Tuple of (bytes, mime_type)

    Raises:
        ValueError: If ``ref`` is not a well-formed data URL
    """
    if not is_inline_reference(ref):
        raise ValueError("Not an inline data URL")

    header, sep, body = ref[len(DATA_URL_PREFIX):].partition(",")
    if not sep:
        raise ValueError("Inline data URL has no payload separator")

    params = header.split(";")
    mime_type = params[0] or DEFAULT_MIME_TYPE

    if "base64" in params[1:]:
        try:
            return base64.b64decode(body, validate=True), mime_type
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid base64 payload: {e}")

    return unquote_to_bytes(body), mime_type
