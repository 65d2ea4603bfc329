"""
Validators for desired group configuration (name/display name/quota/IDs).
"""
from __future__ import annotations

import re
from typing import Any, Iterable

from ..core.models import parse_uuid

NAME_RE = re.compile(r"^[a-zA-Z0-9]+(?:-[a-zA-Z0-9]+)*$")
DISPLAY_NAME_RE = re.compile(r"^[^\s](.*[^\s])?$")

NAME_MAX = 36
DISPLAY_NAME_MAX = 64


class ValidationError(Exception):
    """Raised when a desired group configuration is invalid."""
    pass


def _prefix(context: str | None) -> str:
    return f"{context}: " if context else ""


def require_keys(block: dict, required: Iterable[str], context: str | None = None) -> None:
    """Ensure that all required keys are present in a mapping."""
    missing = [k for k in required if k not in block or block[k] in (None, "")]
    if missing:
        raise ValidationError(f"{_prefix(context)}Missing required keys: {', '.join(missing)}")


def validate_name(name: str, context: str | None = None) -> None:
    if not 1 <= len(name) <= NAME_MAX:
        raise ValidationError(f"{_prefix(context)}name must be 1-{NAME_MAX} characters, got {len(name)}")
    if not NAME_RE.match(name):
        raise ValidationError(f"{_prefix(context)}Group names must be alphanumeric with hyphens: {name!r}")


def validate_display_name(display_name: str, context: str | None = None) -> None:
    """An empty display name is allowed (the service shows the name instead)."""
    if display_name == "":
        return
    if len(display_name) > DISPLAY_NAME_MAX:
        raise ValidationError(
            f"{_prefix(context)}display_name must be at most {DISPLAY_NAME_MAX} characters"
        )
    if not DISPLAY_NAME_RE.match(display_name):
        raise ValidationError(
            f"{_prefix(context)}Group display names must not start or end with whitespace: {display_name!r}"
        )


def validate_quota(quota: Any, context: str | None = None) -> int:
    if isinstance(quota, bool):
        raise ValidationError(f"{_prefix(context)}quota_allowance must be an integer")
    try:
        value = int(quota)
    except (TypeError, ValueError):
        raise ValidationError(f"{_prefix(context)}quota_allowance must be an integer, got {quota!r}")
    if value < 0 or value > 2**31 - 1:
        raise ValidationError(f"{_prefix(context)}quota_allowance out of range: {value}")
    return value


def validate_uuid(value: Any, field: str, context: str | None = None) -> str:
    try:
        return parse_uuid(value)
    except ValueError:
        raise ValidationError(f"{_prefix(context)}{field} must be a UUID, got {value!r}")
