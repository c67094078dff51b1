import re
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from .database import utcnow

EDUCATION_REQUIRED_STR_FIELDS = ["institution_name", "degree"]
EDUCATION_OPTIONAL_STR_FIELDS = ["field", "credential_id"]

CERTIFICATE_REQUIRED_STR_FIELDS = ["name", "issuer"]
CERTIFICATE_OPTIONAL_STR_FIELDS = ["credential_id", "credential_url"]

MAX_GPA = 100.0

TZ_SUFFIX = re.compile(r"([+-]\d{2})(\d{2})$")


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def _valid_url(v: str) -> bool:
    try:
        p = urlparse(v)
        return bool(p.scheme and p.netloc)
    except ValueError:
        return False


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_date(value: Any) -> Optional[datetime]:
    """
    Coerce a date-like value to a naive UTC datetime.

    Accepts datetime, date, or an ISO-8601 string ("Z" and "+0000" offsets
    included). Returns None for missing/empty values and raises ValueError
    for unparseable ones.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        text = TZ_SUFFIX.sub(r"\1:\2", value.strip().replace("Z", "+00:00"))
        return _naive_utc(datetime.fromisoformat(text))
    raise ValueError(f"Unsupported date value: {value!r}")


def _check_strings(data: Dict[str, Any], required: List[str], optional: List[str]) -> List[str]:
    errors: List[str] = []
    for f in required:
        if f not in data or data[f] is None:
            errors.append(f"Missing required field: {f}")
        elif not _is_non_empty_str(data[f]):
            errors.append(f"Field '{f}' must be a non-empty string")
    for f in optional:
        if data.get(f) is not None and not isinstance(data[f], str):
            errors.append(f"Field '{f}' must be a string if provided")
    return errors


def _date_field(data: Dict[str, Any], name: str, errors: List[str]) -> Optional[datetime]:
    try:
        return parse_date(data.get(name))
    except ValueError:
        errors.append(f"Field '{name}' must be an ISO-8601 date")
        return None


def validate_education_record(data: Dict[str, Any], now: Optional[datetime] = None) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.

    Checks required fields, date ordering (start not in the future, end not
    before start) and GPA bounds (0 to 100, the widest supported scale).
    """
    now = now or utcnow()
    errors = _check_strings(data, EDUCATION_REQUIRED_STR_FIELDS, EDUCATION_OPTIONAL_STR_FIELDS)

    start = _date_field(data, "start_date", errors)
    end = _date_field(data, "end_date", errors)
    if data.get("start_date") in (None, ""):
        errors.append("Missing required field: start_date")

    if start is not None and start > now:
        errors.append("Start date is in the future")
    if start is not None and end is not None and end < start:
        errors.append("End date is before start date")

    gpa = data.get("gpa")
    if gpa is not None:
        if isinstance(gpa, bool) or not isinstance(gpa, (int, float)):
            errors.append("Field 'gpa' must be a number if provided")
        elif gpa < 0:
            errors.append("GPA cannot be negative")
        elif gpa > MAX_GPA:
            errors.append("GPA exceeds maximum possible value")

    return errors


def education_warnings(data: Dict[str, Any]) -> List[str]:
    """Non-blocking observations about a valid education record."""
    warnings: List[str] = []
    start = parse_date(data.get("start_date"))
    end = parse_date(data.get("end_date"))
    if start is not None and end is not None:
        duration_years = (end - start).total_seconds() / (365 * 24 * 3600)
        if duration_years < 0.5:
            warnings.append("Education duration is very short (less than 6 months)")
        elif duration_years > 10:
            warnings.append("Education duration is unusually long (more than 10 years)")
    return warnings


def validate_certificate(data: Dict[str, Any], now: Optional[datetime] = None) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.

    An expired certificate is valid; only inconsistent dates are rejected.
    """
    now = now or utcnow()
    errors = _check_strings(data, CERTIFICATE_REQUIRED_STR_FIELDS, CERTIFICATE_OPTIONAL_STR_FIELDS)

    issued = _date_field(data, "issue_date", errors)
    expires = _date_field(data, "expiry_date", errors)
    if data.get("issue_date") in (None, ""):
        errors.append("Missing required field: issue_date")

    if issued is not None and issued > now:
        errors.append("Issue date is in the future")
    if issued is not None and expires is not None and expires < issued:
        errors.append("Expiry date is before issue date")

    url = data.get("credential_url")
    if _is_non_empty_str(url) and not _valid_url(url):
        errors.append("Field 'credential_url' must be a valid absolute URL (scheme + host)")

    return errors
