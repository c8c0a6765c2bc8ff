"""
Constrained field types and timestamp helpers shared by all contracts.

Timestamps travel through the pipeline as ISO-8601 strings exactly as they
were received so that hashes are computed over the original text. Ordering
and window checks parse them to aware UTC datetimes with ``parse_timestamp``.
"""

import re
from datetime import datetime, timezone
from typing import Annotated, Optional

from pydantic import AfterValidator, StringConstraints

TENANT_ID_PATTERN = r"^[a-z0-9-]+$"
PROJECT_ID_PATTERN = r"^[a-z0-9_-]+$"
CURRENCY_PATTERN = r"^[A-Z]{3}$"

STABLE_TIMESTAMP = "1970-01-01T00:00:00.000Z"

_ISO_DATETIME = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:\d{2})$")


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp with an explicit offset into aware UTC.

    Args:
        value: Timestamp such as ``2024-01-15T10:30:00.000Z``

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        ValueError: If the value is not a full datetime with an offset
    """
    if not isinstance(value, str) or not _ISO_DATETIME.match(value):
        raise ValueError(f"Invalid ISO-8601 datetime: {value!r}")
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    # fromisoformat only accepts 3 or 6 fractional digits before 3.11
    if "." in text:
        head, rest = text.split(".", 1)
        digits = re.match(r"\d+", rest).group(0)
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest[len(digits):]}"
    return datetime.fromisoformat(text).astimezone(timezone.utc)


def try_parse_timestamp(value: object) -> Optional[datetime]:
    """Parse a timestamp, returning None instead of raising."""
    try:
        return parse_timestamp(value)  # type: ignore[arg-type]
    except ValueError:
        return None


def format_timestamp(moment: datetime) -> str:
    """Render a datetime as UTC ISO-8601 with millisecond precision and a Z suffix."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def utc_now() -> str:
    """Current wall-clock time as an ISO-8601 string."""
    return format_timestamp(datetime.now(timezone.utc))


def live_timestamp(stable_output: bool) -> str:
    """Wall-clock timestamp, or the fixed sentinel when stable output is requested."""
    return STABLE_TIMESTAMP if stable_output else utc_now()


def _check_timestamp(value: str) -> str:
    parse_timestamp(value)
    return value


TenantId = Annotated[str, StringConstraints(min_length=1, pattern=TENANT_ID_PATTERN)]
ProjectId = Annotated[str, StringConstraints(min_length=1, pattern=PROJECT_ID_PATTERN)]
CurrencyCode = Annotated[str, StringConstraints(pattern=CURRENCY_PATTERN)]
NonEmptyStr = Annotated[str, StringConstraints(min_length=1)]
Timestamp = Annotated[str, AfterValidator(_check_timestamp)]
