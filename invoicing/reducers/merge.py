"""Merge helpers for partial edits.

Two fallback rules are used by the engines:

- ``supplied_or_current``: a field present in the payload wins, even when it
  is null; an absent field keeps the current value.
- ``first_not_none``: null behaves like an absent field.
"""

from typing import Any, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


def is_supplied(payload: BaseModel, field: str) -> bool:
    """Check whether the caller explicitly set a payload field."""
    return field in payload.model_fields_set


def supplied_or_current(payload: BaseModel, field: str, current: T | None) -> T | None:
    """Return the supplied value if the field is present, else the current value.

    Args:
        payload: Validated action payload
        field: Payload attribute name
        current: Value currently held in state (may be None)

    Returns:
        The resolved value
    """
    if is_supplied(payload, field):
        return getattr(payload, field)
    return current


def first_not_none(*values: T | None, default: T | None = None) -> T | None:
    """Return the first value that is not None, else ``default``."""
    for value in values:
        if value is not None:
            return value
    return default


def supplied_values(payload: BaseModel, exclude: set[str] | None = None) -> dict[str, Any]:
    """Return the payload fields that were supplied with a non-null value.

    Args:
        payload: Validated action payload
        exclude: Attribute names to leave out

    Returns:
        Mapping of attribute name to value
    """
    return {
        field: value
        for field, value in payload.model_dump(exclude_unset=True).items()
        if value is not None and field not in (exclude or set())
    }
