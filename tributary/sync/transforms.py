"""
Value transforms applied to raw source cells.

Every transform takes the raw cell string plus an optional configuration
mapping and returns the normalized value or ``None``. Transforms never raise
for malformed input.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, Mapping

Transform = Callable[[str, Mapping[str, Any] | None], Any]

TRUTHY_VALUES = frozenset({"true", "yes", "y", "1", "on", "active", "enabled"})
FALSY_VALUES = frozenset({"false", "no", "n", "0", "off", "inactive", "disabled"})

_CURRENCY_STRIP = re.compile(r"[$£€,\s]")
_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T\s].*)?$")
_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2}|\d{4})$")
_MONTH_DAY = re.compile(r"^(\d{1,2})/(\d{1,2})$")


def _text(raw: Any) -> str:
    if raw is None:
        return ""
    return str(raw).strip()


def _config(config: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return config if isinstance(config, Mapping) else {}


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_date_string(raw: Any, *, today: date | None = None) -> date | None:
    """
    Parse ``YYYY-MM-DD``, ``MM/DD/YYYY``, ``MM/DD/YY`` or bare ``M/D``.

    Bare month/day values assume the year of ``today`` (defaults to the
    current date). Two-digit years are read as 2000-based.
    """
    text = _text(raw)
    if not text:
        return None

    match = _ISO_DATE.match(text)
    if match:
        return _safe_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))

    match = _US_DATE.match(text)
    if match:
        year = int(match.group(3))
        if year < 100:
            year += 2000
        return _safe_date(year, int(match.group(1)), int(match.group(2)))

    match = _MONTH_DAY.match(text)
    if match:
        reference = today or date.today()
        return _safe_date(reference.year, int(match.group(1)), int(match.group(2)))

    return None


def _identity(raw, config=None):
    return raw


def _trim(raw, config=None):
    return _text(raw) or None


def _lowercase(raw, config=None):
    return _text(raw).lower() or None


def _uppercase(raw, config=None):
    return _text(raw).upper() or None


def _date(raw, config=None):
    parsed = parse_date_string(raw)
    return parsed.isoformat() if parsed else None


def _parse_float(text: str) -> float | None:
    if not text:
        return None
    try:
        value = float(text)
    except ValueError:
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def _currency(raw, config=None):
    value = _parse_float(_CURRENCY_STRIP.sub("", _text(raw)))
    if value is None:
        return None
    if _config(config).get("as_cents"):
        return int(round(value * 100))
    return value


def _boolean(raw, config=None):
    token = _text(raw).lower()
    if not token:
        return None
    if token in TRUTHY_VALUES:
        return True
    if token in FALSY_VALUES:
        return False
    return _config(config).get("default_value")


def _number(raw, config=None):
    value = _parse_float(_text(raw).replace(",", ""))
    if value is None:
        return None
    if _config(config).get("integer"):
        return int(value)
    return value


def _json(raw, config=None):
    text = _text(raw)
    if not text:
        return None
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def _value_mapping(raw, config=None):
    options = _config(config)
    text = _text(raw)
    if not text:
        return None
    mappings = options.get("mappings") or {}
    if isinstance(mappings, Mapping):
        if text in mappings:
            return mappings[text]
        lowered = text.lower()
        for candidate, mapped in mappings.items():
            if str(candidate).lower() == lowered:
                return mapped
    return options.get("default")


TRANSFORMS: Dict[str, Transform] = {
    "none": _identity,
    "trim": _trim,
    "lowercase": _lowercase,
    "uppercase": _uppercase,
    "date": _date,
    "currency": _currency,
    "boolean": _boolean,
    "number": _number,
    "json": _json,
    "value_mapping": _value_mapping,
}


def is_valid_transform(name: str | None) -> bool:
    return name is None or name in TRANSFORMS


def get_transform(name: str | None) -> Transform:
    """Return the transform registered under ``name``; identity for blank or unknown names."""
    if not name:
        return _identity
    return TRANSFORMS.get(name, _identity)


@dataclass(frozen=True)
class TransformOutcome:
    value: Any
    error: str | None = None


def apply_transform(name: str | None, raw: Any, config: Mapping[str, Any] | None = None) -> TransformOutcome:
    """
    Run a transform and describe a failure instead of raising.

    A non-empty input that produces ``None`` counts as a failure.
    """
    transform = get_transform(name)
    try:
        value = transform(raw, config)
    except Exception as exc:  # pragma: no cover - transforms are total
        return TransformOutcome(None, f"Transform '{name}' failed for value '{raw}': {exc}")
    if value is None and _text(raw):
        return TransformOutcome(None, f"Could not apply transform '{name}' to value '{_text(raw)}'")
    return TransformOutcome(value)
