"""
Payload codec for trace bodies.

<object>, <return> and tracked <arg> bodies arrive Base64-encoded. Some
exporters already write them as plain text, so a body that is not valid
Base64 is not an error for the trace as a whole: decode_payload() raises
DecodeFailure and the parser keeps the raw text.
"""

import base64
import binascii
import logging
from typing import Optional

from tracegraph.errors import DecodeFailure

logger = logging.getLogger(__name__)


def decode_payload(encoded: str) -> str:
    """
    Strict Base64 decode of a payload body.

    Whitespace inside the body is ignored. The decoded bytes are read as
    UTF-8; undecodable bytes become U+FFFD rather than failing.

    Raises:
        DecodeFailure: the body is not valid Base64
    """
    compact = "".join(encoded.split())
    try:
        raw = base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeFailure(
            "Payload is not valid Base64",
            details={"length": len(encoded), "reason": str(e)},
        ) from e
    return raw.decode("utf-8", errors="replace")


def decode_or_raw(encoded: Optional[str], context: str = "") -> Optional[str]:
    """
    Decode a body, falling back to the raw text when it is not Base64.

    Returns None for an absent or empty body.
    """
    if not encoded:
        return None
    try:
        return decode_payload(encoded)
    except DecodeFailure as e:
        logger.warning(f"[TraceCodec] {e.message} ({context or 'payload'}), keeping raw text")
        return encoded
