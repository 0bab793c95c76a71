from __future__ import annotations

from typing import Any

import pytest

from eventmetrics.classifiers.dispatcher import MetricClassifier
from eventmetrics.schemas.metric import MetricDefinition

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def by_name(metrics: list[MetricDefinition], name: str) -> list[MetricDefinition]:
    """Return every metric called *name*."""
    return [m for m in metrics if m.name == name]


def one(metrics: list[MetricDefinition], name: str) -> MetricDefinition:
    """Return the single metric called *name*, failing if there is not exactly one."""
    matches = by_name(metrics, name)
    assert len(matches) == 1, f"expected one {name}, got {[m.name for m in metrics]}"
    return matches[0]


def push_payload(commits: list[Any], **extra: Any) -> dict[str, Any]:
    """A minimal GitHub push payload for acme/api."""
    payload: dict[str, Any] = {
        "ref": "refs/heads/main",
        "repository": {"full_name": "acme/api"},
        "pusher": {"name": "octo"},
        "commits": commits,
    }
    payload.update(extra)
    return payload


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def classifier() -> MetricClassifier:
    return MetricClassifier()
