import datetime


def utcnow() -> datetime.datetime:
    """Naive UTC timestamp, matching the TIMESTAMP (without time zone) columns."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)
