"""Per-field answer validation."""

from __future__ import annotations

import math
import re

_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE = re.compile(r"^\d{10,}$")


def validate_field_value(value: str | None, validation_type: str) -> bool:
    """True when *value* is acceptable for a field of *validation_type*.

    Unknown types accept any non-empty value.
    """
    if not value:
        return False
    value = value.strip()

    match validation_type:
        case "text":
            return len(value) > 0
        case "email":
            return bool(_EMAIL.match(value))
        case "number":
            try:
                return math.isfinite(float(value))
            except ValueError:
                return False
        case "phone":
            return bool(_PHONE.match(value))
        case _:
            return True
