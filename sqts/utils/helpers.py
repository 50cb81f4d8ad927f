"""Shared parsing helpers used by services and blueprints.

parse_date:        lenient (returns None on empty input, raises on garbage)
format_date:       date → ISO string (None-safe)
parse_id_list:     JSON array of ints → list[int] (raises on anything else)
"""
from datetime import date, datetime

from sqts.core.exceptions import ValidationError


def parse_date(value, field: str = "date"):
    """Parse an ISO ``YYYY-MM-DD`` string (or date/datetime) to a date.

    Returns None for empty input. Raises ValidationError for anything that is
    not a recognisable date so bad input never silently clears a date.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        if "T" in text:
            return datetime.fromisoformat(text).date()
        return date.fromisoformat(text)
    except (ValueError, TypeError):
        raise ValidationError(
            f"{field} must be an ISO date (YYYY-MM-DD)", details={field: str(value)}
        ) from None


def format_date(value):
    """Return ``YYYY-MM-DD`` for a date, None for None."""
    return value.isoformat() if value else None


def parse_id_list(value, field: str):
    """Validate a JSON array of integer ids."""
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a list of ids", details={field: "list required"})
    ids = []
    for raw in value:
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise ValidationError(f"{field} must contain integer ids", details={field: repr(raw)})
        ids.append(raw)
    return ids
