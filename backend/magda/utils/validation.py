"""Input format checks shared by the pydantic models."""

import re
from datetime import date, datetime

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^\(?([0-9]{3})\)?[-. ]?([0-9]{3})[-. ]?([0-9]{4})$")
NAME_RE = re.compile(r"^[^\W\d_]+(?:[\s'-][^\W\d_]+)*$")
DOB_RE = re.compile(r"^(0[1-9]|1[0-2])/(0[1-9]|[12][0-9]|3[01])/\d{4}$")

MAX_AGE_YEARS = 120


def is_valid_email(email: str) -> bool:
    return bool(email) and EMAIL_RE.match(email) is not None


def is_valid_phone(phone: str) -> bool:
    """Accept (555) 123-4567, 555-123-4567, 555.123.4567 and 5551234567."""
    return bool(phone) and PHONE_RE.match(phone) is not None


def is_valid_name(name: str) -> bool:
    if not name or not name.strip():
        return False
    return NAME_RE.match(name.strip()) is not None


def parse_date_of_birth(value: str, today: date | None = None) -> date | None:
    """Parse MM/DD/YYYY or ISO YYYY-MM-DD; None when invalid or implausible."""
    today = today or date.today()
    try:
        if DOB_RE.match(value):
            parsed = datetime.strptime(value, "%m/%d/%Y").date()
        else:
            parsed = date.fromisoformat(value)
    except ValueError:
        return None
    if parsed > today or parsed.year < today.year - MAX_AGE_YEARS:
        return None
    return parsed
