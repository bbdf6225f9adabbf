"""Resolution of 'now' and the UTC offset for one execution."""
from datetime import datetime, timezone

from clause_runtime.errors import ValidationError
from clause_runtime.models.serializer import offset_timezone, parse_datetime


def resolve_current_time(now: datetime | str | None, utc_offset: int | None) -> tuple[datetime, int]:
    """
    Resolve 'now' and the UTC offset as a consistent pair.

    Without an explicit offset, the offset of 'now' is used; without 'now',
    the local current time. The returned datetime is expressed in the
    returned offset.

    Args:
        now: Definition of 'now' as a datetime or ISO 8601 string
        utc_offset: UTC offset in minutes

    Returns:
        Tuple of (now, utc_offset in minutes)

    Raises:
        ValidationError: If 'now' is not a valid date and time
    """
    if now is None:
        current = datetime.now().astimezone()
    elif isinstance(now, datetime):
        current = now if now.tzinfo is not None else now.replace(tzinfo=timezone.utc)
    else:
        try:
            current = parse_datetime(now, 0)
        except ValidationError as e:
            raise ValidationError(f"Invalid definition of now: {now!r}", "now") from e

    if utc_offset is None:
        delta = current.utcoffset()
        utc_offset = int(delta.total_seconds() // 60) if delta is not None else 0

    return current.astimezone(offset_timezone(utc_offset)), utc_offset
