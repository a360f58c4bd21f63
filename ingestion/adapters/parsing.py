"""
Value parsing helpers shared by the adapters' record normalisers
"""

import re
from datetime import datetime, timezone
from typing import Any, Optional

_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")


def parse_float(value: Any) -> Optional[float]:
    """Safely parse float value"""
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def parse_int(value: Any) -> Optional[int]:
    """Safely parse int value"""
    if value is None or value == "":
        return None
    try:
        return int(float(value))  # Handle "10.0" strings
    except (ValueError, TypeError):
        return None


def parse_price(value: Any) -> Optional[float]:
    """
    Parse prices written as text, e.g. "AED 85,000/year" or "3.50 AED".
    Numbers pass through unchanged.
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if not isinstance(value, str):
        return None
    match = _NUMBER.search(value.replace(",", ""))
    if match is None:
        return None
    return float(match.group(0))


def parse_datetime(value: Any) -> Optional[datetime]:
    """Safely parse datetime value; naive values are taken as UTC"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
