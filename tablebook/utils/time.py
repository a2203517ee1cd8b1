from datetime import datetime

DISPLAY_FORMAT = "%d/%m/%Y %H:%M"

def to_local_naive(dt: datetime) -> datetime:
    """Converts an aware datetime to naive local wall-clock time. Naive input is returned as is."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone().replace(tzinfo=None)

def api_iso(dt: datetime) -> str:
    """Formats a wall-clock datetime for API responses."""
    return dt.isoformat(timespec="microseconds" if dt.microsecond else "seconds")

def display(dt: datetime) -> str:
    return dt.strftime(DISPLAY_FORMAT)
