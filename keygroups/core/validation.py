"""
Field-level input checks. These never touch storage and raise
`ValidationError` naming the offending field.
"""

import string

from .errors import ValidationError

GROUP_NAME_MAX_LENGTH = 100
GROUP_DESCRIPTION_MAX_LENGTH = 500

PUBLIC_CODE_MIN_LENGTH = 3
PUBLIC_CODE_MAX_LENGTH = 20

INVITE_CODE_MIN_LENGTH = 8
INVITE_CODE_MAX_LENGTH = 16

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 20

IDENTIFIER_LENGTH = 32
ENCRYPTED_GROUP_KEY_LENGTH = 64
GROUP_ENCRYPTION_KEY_LENGTH = 32

# Counters are unsigned 16-bit values
MAX_COUNTER = 0xFFFF

_ALNUM = set(string.ascii_letters + string.digits)
_PUBLIC_CODE_CHARACTERS = set(string.ascii_lowercase + string.digits + "-")
_USERNAME_CHARACTERS = _ALNUM | {"_"}


def validate_group_name(name: str) -> str:
    if not 1 <= len(name) <= GROUP_NAME_MAX_LENGTH:
        raise ValidationError(
            "name", f"Group name must be 1-{GROUP_NAME_MAX_LENGTH} characters"
        )
    return name


def validate_group_description(description: str) -> str:
    if len(description) > GROUP_DESCRIPTION_MAX_LENGTH:
        raise ValidationError(
            "description",
            f"Group description must be 0-{GROUP_DESCRIPTION_MAX_LENGTH} characters",
        )
    return description


def validate_public_code(code: str) -> str:
    """
    Public codes are 3-20 characters of lowercase letters, digits and
    hyphens. The code is checked exactly as given; case folding for lookups
    happens in the addressing layer.
    """
    if not PUBLIC_CODE_MIN_LENGTH <= len(code) <= PUBLIC_CODE_MAX_LENGTH:
        raise ValidationError(
            "public_code",
            f"Public code must be {PUBLIC_CODE_MIN_LENGTH}-"
            f"{PUBLIC_CODE_MAX_LENGTH} characters",
        )
    if not set(code) <= _PUBLIC_CODE_CHARACTERS:
        raise ValidationError(
            "public_code",
            "Public code can only contain lowercase letters, numbers, and hyphens",
        )
    return code


def validate_invite_code(code: str) -> str:
    if not INVITE_CODE_MIN_LENGTH <= len(code) <= INVITE_CODE_MAX_LENGTH:
        raise ValidationError(
            "invite_code",
            f"Invite code must be {INVITE_CODE_MIN_LENGTH}-"
            f"{INVITE_CODE_MAX_LENGTH} characters",
        )
    if not set(code) <= _ALNUM:
        raise ValidationError(
            "invite_code", "Invite code can only contain alphanumeric characters"
        )
    return code


def validate_username(username: str) -> str:
    if not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
        raise ValidationError(
            "username",
            f"Username must be {USERNAME_MIN_LENGTH}-{USERNAME_MAX_LENGTH} characters",
        )
    if not set(username) <= _USERNAME_CHARACTERS:
        raise ValidationError(
            "username", "Username can only contain letters, numbers, and underscores"
        )
    return username


def validate_fixed_bytes(value: bytes, length: int, field: str) -> bytes:
    if not isinstance(value, bytes) or len(value) != length:
        raise ValidationError(field, f"{field} must be exactly {length} bytes")
    return value


def validate_group_id(group_id: bytes) -> bytes:
    return validate_fixed_bytes(group_id, IDENTIFIER_LENGTH, "group_id")


def validate_identity(identity: bytes, field: str = "identity") -> bytes:
    return validate_fixed_bytes(identity, IDENTIFIER_LENGTH, field)


def validate_counter_limit(value: int, field: str) -> int:
    """
    Limits such as `max_members` and `max_uses` use 0 for "unlimited" and
    otherwise fit in an unsigned 16-bit counter.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, f"{field} must be an integer")
    if not 0 <= value <= MAX_COUNTER:
        raise ValidationError(field, f"{field} must be between 0 and {MAX_COUNTER}")
    return value
