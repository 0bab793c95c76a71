from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _normalize_key(key: Any) -> str:
    if isinstance(key, Enum):
        return str(key.value)
    if isinstance(key, bytes):
        return key.decode("utf-8", errors="replace")
    return str(key)


def normalize_payload(value: Any) -> Any:
    """Recursively convert every mapping key in *value* to ``str``.

    Lists and tuples are walked so that commit lists, step lists and similar
    nested collections are normalised too.  Scalars are returned unchanged.
    """
    if isinstance(value, Mapping):
        return {_normalize_key(k): normalize_payload(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [normalize_payload(v) for v in value]
    return value


class Event(BaseModel):
    """An immutable record of something that happened on an external platform.

    ``name`` is dot-hierarchical (``"github.push"``, ``"ci.deploy.completed"``)
    and its first segment selects the classifier.  ``data`` is the webhook
    payload with every key normalised to a string at construction time, so
    downstream lookups never need to try alternative key representations.
    """

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    name: str
    source: str
    timestamp: datetime = Field(default_factory=_utcnow)
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("name", "source")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("timestamp")
    @classmethod
    def _aware_timestamp(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @field_validator("data", mode="before")
    @classmethod
    def _normalize_data(cls, value: Any) -> dict[str, Any]:
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            raise ValueError("data must be a mapping")
        return normalize_payload(value)

    def with_id(self, event_id: str) -> Event:
        """Return a copy of this event carrying the persistence *event_id*."""
        return self.model_copy(update={"id": event_id})

    def age(self, now: datetime | None = None) -> timedelta:
        """Time elapsed between the event and *now* (defaults to the current UTC time)."""
        return (now or _utcnow()) - self.timestamp
