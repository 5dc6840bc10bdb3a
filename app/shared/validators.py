"""Shared validation utilities"""

import re
from datetime import datetime, timezone
from typing import Optional, Union

from ..models import ORDER_NUMBER_PREFIX

_SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


def normalize_client_id(value: Union[str, int, None]) -> Optional[str]:
    """
    Normalize a client identifier to its canonical string form.

    Legacy records carry client ids as either numbers or numeric strings.

    Args:
        value: Client id as received from the caller

    Returns:
        Stripped string id ("00123" and 123 stay distinct, 123.0 becomes "123")

    Raises:
        ValueError: If the id is empty or not a scalar
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("Client id must be a string or a number")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError("Client id must be a whole number")
        value = int(value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValueError("Client id cannot be empty")
        return value
    raise ValueError("Client id must be a string or a number")


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC already"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def is_order_number(identifier: str) -> bool:
    return identifier.startswith(ORDER_NUMBER_PREFIX)


def is_slug(value: str) -> bool:
    return bool(_SLUG_PATTERN.match(value or ""))
