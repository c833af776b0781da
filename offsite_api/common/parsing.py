# offsite_api/common/parsing.py
from datetime import date, datetime
from typing import Optional

from offsite_api.common.errors import ValidationFailed


def parse_ymd(raw, field: str, required: bool = True) -> Optional[date]:
    """YYYY-MM-DD (a trailing time part is ignored)."""
    if raw in (None, ""):
        if required:
            raise ValidationFailed(message=f"{field} is required")
        return None
    s = str(raw).strip()
    try:
        return datetime.strptime(s[:10], "%Y-%m-%d").date()
    except ValueError:
        raise ValidationFailed(message=f"{field} must be YYYY-MM-DD")


def as_int(raw, field: str, required: bool = False) -> Optional[int]:
    if raw in (None, "", "null"):
        if required:
            raise ValidationFailed(message=f"{field} is required")
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationFailed(message=f"{field} must be integer")


def as_float(raw, field: str) -> Optional[float]:
    if raw in (None, ""):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ValidationFailed(message=f"{field} must be a number")
