from datetime import datetime, timezone


def utc_now_naive() -> datetime:
    """
    DB stores naive DateTime values.
    Rule: everything is stored as UTC naive.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(dt: datetime) -> datetime:
    # naive input is assumed to already be UTC
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)
