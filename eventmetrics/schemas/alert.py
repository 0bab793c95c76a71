from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from eventmetrics.errors import InvalidAlertTransition
from eventmetrics.models.enums import AlertStatus, Severity
from eventmetrics.schemas.metric import Metric

_SEVERITY_RANK: dict[Severity, int] = {
    Severity.info: 0,
    Severity.warning: 1,
    Severity.critical: 2,
}

_ALLOWED_TRANSITIONS: dict[AlertStatus, frozenset[AlertStatus]] = {
    AlertStatus.active: frozenset({AlertStatus.acknowledged, AlertStatus.resolved}),
    AlertStatus.acknowledged: frozenset({AlertStatus.resolved}),
    AlertStatus.resolved: frozenset(),
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Alert(BaseModel):
    """A threshold breach raised against a :class:`Metric`.

    Alerts are immutable; every lifecycle method returns a new instance.

    Status moves ``active -> acknowledged -> resolved`` (an active alert may
    also be resolved directly).  Severity may only be escalated
    ``info -> warning -> critical``.  Anything else raises
    :class:`~eventmetrics.errors.InvalidAlertTransition`.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID | None = None
    name: str = Field(min_length=1)
    severity: Severity
    metric: Metric
    threshold: float
    status: AlertStatus = AlertStatus.active
    timestamp: datetime = Field(default_factory=_utcnow)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def for_breach(
        cls,
        name: str,
        metric: Metric,
        threshold: float,
        severity: Severity = Severity.warning,
    ) -> Alert | None:
        """Return an active alert when ``metric.value`` exceeds *threshold*, else ``None``."""
        if metric.value <= threshold:
            return None
        return cls(name=name, severity=severity, metric=metric, threshold=threshold)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _transition(self, target: AlertStatus) -> Alert:
        if target not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidAlertTransition(
                f"alert {self.name!r} cannot move from {self.status.value} to {target.value}"
            )
        return self.model_copy(update={"status": target})

    def acknowledge(self) -> Alert:
        return self._transition(AlertStatus.acknowledged)

    def resolve(self) -> Alert:
        return self._transition(AlertStatus.resolved)

    def escalate(self, severity: Severity) -> Alert:
        """Raise the alert to *severity*.

        Raises:
            InvalidAlertTransition: if *severity* is not strictly higher than
                the current severity, or the alert is already resolved.
        """
        if self.status is AlertStatus.resolved:
            raise InvalidAlertTransition(f"alert {self.name!r} is resolved")
        if _SEVERITY_RANK[severity] <= _SEVERITY_RANK[self.severity]:
            raise InvalidAlertTransition(
                f"alert {self.name!r} cannot go from {self.severity.value} to {severity.value}"
            )
        return self.model_copy(update={"severity": severity})

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self.status is AlertStatus.active

    @property
    def message(self) -> str:
        return f"{self.name} - {self.metric.name} exceeded threshold of {self.threshold}"

    def details(self) -> dict[str, Any]:
        """Plain-dict view suitable for notification payloads."""
        return {
            "id": str(self.id) if self.id else None,
            "name": self.name,
            "severity": self.severity.value,
            "status": self.status.value,
            "threshold": self.threshold,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "metric": {
                "name": self.metric.name,
                "value": self.metric.value,
                "source": self.metric.source,
                "dimensions": dict(self.metric.dimensions),
                "timestamp": self.metric.timestamp.isoformat(),
            },
        }
