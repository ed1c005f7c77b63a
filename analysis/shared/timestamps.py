"""
ISO-8601 timestamp helpers.

Upstream feeds are not consistent: DIA reports nanosecond fractions with a
trailing ``Z``, the subgraph side is stamped locally. Everything is parsed into
aware UTC datetimes and written back in millisecond precision.
"""

import re
from datetime import datetime, timezone

_FRACTION = re.compile(r"\.(\d+)")


def utc_now() -> datetime:
    """Current wall-clock time in UTC."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 string into an aware UTC datetime.

    Naive values are assumed to be UTC. Raises ValueError on anything that
    is not a parseable string.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Missing timestamp: {value!r}")

    text = value.strip()
    if text[-1] in ("Z", "z"):
        text = text[:-1] + "+00:00"

    # fromisoformat only takes 3 or 6 fractional digits on older interpreters
    text = _FRACTION.sub(
        lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1
    )

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    """Aware UTC copy of ``moment``; naive values are assumed to be UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    """Render a datetime as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    text = as_utc(moment).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def age_seconds(value: str, now: datetime) -> float:
    """Seconds elapsed between ``value`` and ``now`` (negative if in the future)."""
    return (as_utc(now) - parse_timestamp(value)).total_seconds()
