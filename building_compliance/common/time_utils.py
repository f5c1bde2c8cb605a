"""UTC-focused helpers for timestamps and upstream date parsing."""

from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def utc_timestamp_iso() -> str:
    return utc_now().isoformat(timespec="milliseconds")


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_upstream_datetime(value: object) -> datetime | None:
    """Parse the date shapes NYC Open Data datasets emit.

    Socrata floating timestamps (``2024-08-15T00:00:00.000``), plain ISO dates,
    compact ``YYYYMMDD`` strings and US ``MM/DD/YYYY`` dates are accepted.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) == 8 and text.isdigit():
        return datetime.strptime(text, "%Y%m%d").replace(tzinfo=timezone.utc)
    if "/" in text:
        try:
            return datetime.strptime(text.split(" ")[0], "%m/%d/%Y").replace(tzinfo=timezone.utc)
        except ValueError:
            return None
    try:
        return ensure_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        return None
