"""
Text encodings shared by the engine.

Every byte string that leaves the engine (ciphertext, nonces, wrapped keys,
serialized keys, escrow packages) is carried as standard base64 text.
"""

import base64
import binascii
import re
from typing import Union


UserId = Union[int, str]

DECIMAL_ID = re.compile(r"-?[0-9]+")


def encode_bytes(data: bytes) -> str:
    """Encode bytes as base64 text"""
    return base64.b64encode(data).decode("ascii")


def decode_text(text: str) -> bytes:
    """
    Decode base64 text back into bytes.

    Args:
        text: Standard base64 text (padding required)

    Returns:
        Decoded bytes

    Raises:
        ValueError: If the text is not valid base64
    """
    if not isinstance(text, str):
        raise ValueError("Expected base64 text")
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"Invalid base64 text: {e}") from e


def canonical_user_id(user_id: UserId) -> str:
    """
    Convert a user identifier to the form used as an envelope key.

    Integers and decimal strings map to their decimal string ("7", 7 and " 7 "
    all become "7"). Any other non-empty string is an opaque identifier and
    is returned without surrounding whitespace.

    Raises:
        ValueError: For booleans, empty strings and non int/str values
    """
    if isinstance(user_id, bool):
        raise ValueError("Boolean is not a user id")
    if isinstance(user_id, int):
        return str(user_id)
    if isinstance(user_id, str):
        stripped = user_id.strip()
        if not stripped:
            raise ValueError("Empty user id")
        if DECIMAL_ID.fullmatch(stripped):
            return str(int(stripped))
        return stripped
    raise ValueError(f"Unsupported user id type: {type(user_id).__name__}")
