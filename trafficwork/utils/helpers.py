from datetime import datetime, timezone
from decimal import Decimal
from typing import Any


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column in this app stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def from_unix(ts: Any) -> datetime | None:
    if ts in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(ts), tz=timezone.utc).replace(tzinfo=None)
    except (TypeError, ValueError, OverflowError):
        return None


def to_major_units(amount_minor: int | None) -> Decimal | None:
    """999 -> Decimal('9.99'). Minor units never leave the app without this."""
    if amount_minor is None:
        return None
    return (Decimal(int(amount_minor)) / 100).quantize(Decimal("0.01"))


def iso(dt: datetime | None) -> str | None:
    return dt.isoformat() + "Z" if dt else None


def parse_iso(value: Any) -> datetime | None:
    """ISO-8601 string -> naive UTC. Raises ValueError on anything unparseable."""
    if value in (None, ""):
        return None
    dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt
