"""
Generate random identifiers and codes
"""

import secrets
import string

from .validation import IDENTIFIER_LENGTH

_INVITE_ALPHABET = string.ascii_letters + string.digits


def group_id() -> bytes:
    return secrets.token_bytes(IDENTIFIER_LENGTH)


def invite_code(length: int = 12) -> str:
    return "".join(secrets.choice(_INVITE_ALPHABET) for _ in range(length))
