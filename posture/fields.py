"""
posture/fields.py -- Parse-and-validate helpers for incoming field bags.

Every numeric field that reaches a mutation service passes through here
exactly once. Form input can deliver probability as "0.8" and impact as
"7"; both are parsed here, range-checked, and returned as float / int.
Nothing downstream does arithmetic on raw input.

Helpers never raise on their own. They append {"field", "message"} dicts to
the caller's error list and return None, so one request reports every bad
field at once. Callers finish with raise_if(errors).
"""

import math
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from core.errors import ValidationError
from core.scoring import MAX_IMPACT, MAX_PROBABILITY, MIN_IMPACT, MIN_PROBABILITY


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _to_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        try:
            result = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return result if math.isfinite(result) else None


def coerce_probability(value: Any, errors: list, field: str = "probability") -> Optional[float]:
    """Parse a probability in [0, 1]. Blank input returns None without error."""
    if is_blank(value):
        return None
    number = _to_float(value)
    if number is None:
        errors.append({"field": field, "message": "Probability must be a number between 0 and 1"})
        return None
    if not MIN_PROBABILITY <= number <= MAX_PROBABILITY:
        errors.append({"field": field, "message": "Probability must be between 0 and 1"})
        return None
    return number


def coerce_impact(value: Any, errors: list, field: str = "impact") -> Optional[int]:
    """Parse an integer impact in [1, 10].

    Whole-valued floats and strings ("7", "7.0", 7.0) are accepted; anything
    with a fractional part ("7.5") is rejected rather than truncated.
    """
    if is_blank(value):
        return None
    number = _to_float(value)
    if number is None or not number.is_integer():
        errors.append({"field": field, "message": "Impact must be an integer between 1 and 10"})
        return None
    if not MIN_IMPACT <= number <= MAX_IMPACT:
        errors.append({"field": field, "message": "Impact must be between 1 and 10"})
        return None
    return int(number)


def coerce_number(value: Any, errors: list, field: str, low: float, high: float) -> Optional[float]:
    if is_blank(value):
        return None
    number = _to_float(value)
    if number is None or not low <= number <= high:
        errors.append({"field": field, "message": f"{field} must be a number between {low:g} and {high:g}"})
        return None
    return number


def check_choice(value: Any, choices: Iterable[str], errors: list, field: str) -> Optional[str]:
    if value is None:
        return None
    if value not in choices:
        errors.append({"field": field, "message": f"Invalid {field.replace('_', ' ')}"})
        return None
    return value


def check_text(value: Any, errors: list, field: str, max_length: int = 200, required: bool = False) -> Optional[str]:
    if is_blank(value):
        if required:
            errors.append({"field": field, "message": f"{field.capitalize()} is required"})
        return None
    text = str(value).strip()
    if len(text) > max_length:
        errors.append({"field": field, "message": f"{field.capitalize()} must not exceed {max_length} characters"})
        return None
    return text


def require(fields: dict, names: Iterable[str], errors: list) -> None:
    """Record a "required" error for each name that is missing or blank."""
    for name in names:
        if is_blank(fields.get(name)):
            errors.append({"field": name, "message": f"{name.replace('_', ' ').capitalize()} is required"})


def reject_cleared(patch: dict, names: Iterable[str], errors: list) -> None:
    """Record an error for each required field that a patch tries to null or blank out."""
    for name in names:
        if name in patch and is_blank(patch[name]):
            errors.append({"field": name, "message": f"{name.replace('_', ' ').capitalize()} cannot be cleared"})


def raise_if(errors: list, message: str = "Validation failed") -> None:
    if errors:
        # One message per field is enough for the client.
        seen: set[str] = set()
        unique = [e for e in errors if not (e["field"] in seen or seen.add(e["field"]))]
        raise ValidationError(message, unique)
