"""
Stateless pre-condition checks shared by every access control component.

Each function raises ``ValidationError`` with a stable code; none of them
hold state, so they are safe to call from any thread.
"""

import re
from typing import Any, Iterable, Optional

from rolegate.access_control.errors import ErrorCode, ValidationError
from rolegate.platform.config import settings

# Letters, digits, and the punctuation commonly found in directory names.
_FIELD_PATTERN = re.compile(r"^[\w .,:@\-#$%&*+/=?^_`{|}~']+$", re.UNICODE)
_CONTEXT_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+$")


def full_method_name(component: str, method: str) -> str:
    return f"{component}.{method}"


def assert_not_none(value: Any, code: ErrorCode, where: str) -> None:
    if value is None:
        raise ValidationError(f"{where} required value is missing", code, where=where)


def assert_not_empty(value: Optional[str], code: ErrorCode, where: str) -> None:
    if value is None or not str(value).strip():
        raise ValidationError(f"{where} required value is empty", code, where=where)


def validate_field(value: str, where: str = "field", max_length: Optional[int] = None) -> None:
    """Check length and character set of a name-like field."""
    assert_not_empty(value, ErrorCode.FIELD_NULL, where)
    limit = max_length or settings.MAX_FIELD_LENGTH
    if len(value) > limit:
        raise ValidationError(
            f"{where} value exceeds {limit} characters", ErrorCode.FIELD_TOO_LONG, where=where
        )
    if not _FIELD_PATTERN.match(value):
        raise ValidationError(
            f"{where} value contains invalid characters", ErrorCode.FIELD_INVALID_CHARS, where=where
        )


def validate_description(value: Optional[str], where: str = "description") -> None:
    if value is None or value == "":
        return
    limit = settings.MAX_DESCRIPTION_LENGTH
    if len(value) > limit:
        raise ValidationError(
            f"{where} value exceeds {limit} characters", ErrorCode.FIELD_TOO_LONG, where=where
        )
    if not value.isprintable():
        raise ValidationError(
            f"{where} value contains invalid characters", ErrorCode.FIELD_INVALID_CHARS, where=where
        )


def validate_names(values: Iterable[str], where: str) -> None:
    for value in values:
        validate_field(value, where)


def validate_context_id(context_id: Optional[str], where: str = "context_id") -> str:
    """Return a usable tenant id, rejecting malformed ones."""
    if context_id is None or context_id == "":
        return settings.DEFAULT_CONTEXT_ID
    if not _CONTEXT_PATTERN.match(context_id) or len(context_id) > settings.MAX_FIELD_LENGTH:
        raise ValidationError(
            f"{where} [{context_id}] is not a valid tenant id", ErrorCode.CONTEXT_ID_INVALID, where=where
        )
    return context_id
