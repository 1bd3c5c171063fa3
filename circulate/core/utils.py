import unicodedata
from datetime import datetime, timezone, timedelta
from circulate.core.exceptions import InvalidRequestError

ONE_DAY = timedelta(days=1)

def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat those as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def whole_days(delta: timedelta) -> int:
    """Floor of a timedelta expressed in days."""
    return delta // ONE_DAY

def normalize_title(title: str) -> str:
    """Lowercased title with accents stripped, used for same-title checks."""
    decomposed = unicodedata.normalize("NFD", title or "")
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return " ".join(stripped.lower().split())


class Clock:
    """Source of "now" for every circulation decision."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock(Clock):
    """A clock pinned to a fixed instant, moved forward explicitly."""

    def __init__(self, instant: datetime):
        self.instant = as_utc(instant)

    def now(self) -> datetime:
        return self.instant

    def advance(self, **kwargs) -> datetime:
        self.instant = self.instant + timedelta(**kwargs)
        return self.instant


def require_id(value, name: str = "id") -> int:
    """Coerces a record id to a positive int before any state is touched."""
    if isinstance(value, bool):
        raise InvalidRequestError(f"Malformed {name}: {value!r}")
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise InvalidRequestError(f"Malformed {name}: {value!r}")
    if value <= 0:
        raise InvalidRequestError(f"Malformed {name}: {value!r}")
    return value
