from __future__ import annotations
"""Reusable validation helpers for service inputs.

Each helper returns the cleaned value (to enable inline usage) or raises ValidationError.
"""
from typing import Any, Iterable, List, Optional
from fieldops.errors import ValidationError


def validate_choice(value: Any, allowed: Iterable[str], field_name: str = 'status') -> str:
    if value not in tuple(allowed):
        raise ValidationError(f"{field_name} invalid")
    return value


def require_reason(reason: Optional[str], field_name: str = 'reason') -> str:
    """Mandatory human-entered justification for administrative actions."""
    if reason is None or not str(reason).strip():
        raise ValidationError(f"{field_name} is required")
    return str(reason).strip()


def require_text(value: Optional[str], field_name: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field_name} required")
    return str(value).strip()


def clean_url_list(values: Optional[Iterable[Any]], field_name: str) -> List[str]:
    if values is None:
        return []
    if isinstance(values, str) or not isinstance(values, (list, tuple)):
        raise ValidationError(f"{field_name} must be a list of URLs")
    out = []
    for v in values:
        if not isinstance(v, str) or not v.strip():
            raise ValidationError(f"{field_name} must be a list of URLs")
        out.append(v.strip())
    return out

__all__ = ['validate_choice', 'require_reason', 'require_text', 'clean_url_list']
