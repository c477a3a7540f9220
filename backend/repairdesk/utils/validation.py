from __future__ import annotations
"""Reusable validation helpers for service payloads.

Each helper returns the normalized value (to enable inline usage) or raises
PreconditionFailedError with the offending field name.
"""
from typing import Any, Iterable, Optional
from repairdesk.errors import PreconditionFailedError


def require_text(value: Any, field_name: str) -> str:
    if value is None or not str(value).strip():
        raise PreconditionFailedError(f'{field_name} required', field=field_name)
    return str(value).strip()


def optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def non_negative_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool):
        raise PreconditionFailedError(f'{field_name} must be an integer', field=field_name)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise PreconditionFailedError(f'{field_name} must be an integer', field=field_name)
    if isinstance(value, float) and value != number:
        raise PreconditionFailedError(f'{field_name} must be an integer', field=field_name)
    if number < 0:
        raise PreconditionFailedError(f'{field_name} must be >= 0', field=field_name)
    return number


def positive_int(value: Any, field_name: str) -> int:
    number = non_negative_int(value, field_name)
    if number == 0:
        raise PreconditionFailedError(f'{field_name} must be > 0', field=field_name)
    return number


def require_bool(value: Any, field_name: str) -> bool:
    if not isinstance(value, bool):
        raise PreconditionFailedError(f'{field_name} must be true or false', field=field_name)
    return value


def validate_choice(value: Any, allowed: Iterable[str], field_name: str) -> str:
    allowed = tuple(allowed)
    if value not in allowed:
        raise PreconditionFailedError(f"{field_name} invalid", field=field_name, allowed=list(allowed))
    return value

__all__ = ['require_text', 'optional_text', 'non_negative_int', 'positive_int', 'require_bool', 'validate_choice']
