from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import TypeAdapter, ValidationError

from eventmetrics.schemas.event import Event

UNKNOWN = "unknown"

_DATETIME_ADAPTER: TypeAdapter[datetime] = TypeAdapter(datetime)

# ---------------------------------------------------------------------------
# Defensive payload helpers
# ---------------------------------------------------------------------------


def dig(data: Any, *path: Any, default: Any = None) -> Any:
    """Walk *path* through nested mappings, returning *default* on any miss.

    Each step tries the literal key and then its ``str`` form, so payloads
    assembled by hand with non-string keys resolve the same way as
    validated :class:`~eventmetrics.schemas.event.Event` data.  A ``None``
    value at the end of the path is treated as missing.
    """
    current = data
    for key in path:
        if not isinstance(current, Mapping):
            return default
        if key in current:
            current = current[key]
        elif str(key) in current:
            current = current[str(key)]
        else:
            return default
    return default if current is None else current


def dig_str(data: Any, *path: Any, default: str = UNKNOWN) -> str:
    """Like :func:`dig` but always returns a non-empty string."""
    value = dig(data, *path)
    if value is None or value == "":
        return default
    return str(value)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or epoch number to an aware datetime.

    Returns ``None`` for anything that does not parse.
    """
    if value is None or value == "":
        return None
    try:
        parsed = _DATETIME_ADAPTER.validate_python(value)
    except ValidationError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def seconds_between(start: Any, end: Any) -> float | None:
    """Seconds from *start* to *end*, or ``None`` when either fails to parse."""
    started = parse_timestamp(start)
    ended = parse_timestamp(end)
    if started is None or ended is None:
        return None
    return (ended - started).total_seconds()


def _to_number(value: Any, default: float = 0) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, int | float):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


# ---------------------------------------------------------------------------
# Field extractors shared by the classifiers
# ---------------------------------------------------------------------------


def extract_author(data: Mapping[str, Any]) -> str:
    """Sender login, then pusher name, then ``"unknown"``."""
    return dig(data, "sender", "login") or dig(data, "pusher", "name") or UNKNOWN


def extract_branch(data: Mapping[str, Any]) -> str:
    """Branch or tag name from ``data.ref`` without the ``refs/...`` prefix."""
    ref = dig(data, "ref")
    if not isinstance(ref, str) or not ref:
        return UNKNOWN
    for prefix in ("refs/heads/", "refs/tags/"):
        if ref.startswith(prefix):
            return ref[len(prefix):]
    return ref


def extract_organization(repository: str) -> str:
    if not repository or repository == UNKNOWN or "/" not in repository:
        return UNKNOWN
    return repository.split("/", 1)[0] or UNKNOWN


def extract_jira_issue_type(data: Mapping[str, Any]) -> str:
    return dig_str(data, "issue", "fields", "issuetype", "name")


def extract_gitlab_commit_count(data: Mapping[str, Any]) -> int:
    """Length of ``commits``, then ``total_commits_count``, then 1."""
    commits = dig(data, "commits")
    if isinstance(commits, list):
        return len(commits)
    total = dig(data, "total_commits_count")
    if total is not None:
        return int(_to_number(total, 1))
    return 1


def extract_bitbucket_commit_count(data: Mapping[str, Any]) -> int:
    """Sum of commit list lengths over every change in ``push.changes``."""
    changes = dig(data, "push", "changes")
    if not isinstance(changes, list):
        return 0
    count = 0
    for change in changes:
        commits = dig(change, "commits")
        if isinstance(commits, list):
            count += len(commits)
    return count


def extract_ci_duration(data: Mapping[str, Any]) -> float:
    """Build duration in seconds.

    Uses ``end_time - start_time`` when both are present; an unparseable pair
    yields ``0``.  Without both timestamps falls back to ``data.duration``.
    """
    start = dig(data, "start_time")
    end = dig(data, "end_time")
    if start is not None and end is not None:
        elapsed = seconds_between(start, end)
        return elapsed if elapsed is not None else 0
    return _to_number(dig(data, "duration"), 0)


# ---------------------------------------------------------------------------
# Dimension extractor
# ---------------------------------------------------------------------------


class DimensionExtractor:
    """Produce the base dimension map for an event, keyed by source prefix.

    The extractor is stateless; a single instance can be shared between
    classifiers and threads.  It never raises: any missing field becomes the
    literal ``"unknown"``.

    Usage::

        extractor = DimensionExtractor()
        dims = extractor.extract(event)
    """

    def __init__(self) -> None:
        self._extractors: dict[str, Callable[[Event], dict[str, str]]] = {
            "github": self._github,
            "jira": self._jira,
            "gitlab": self._gitlab,
            "bitbucket": self._bitbucket,
            "ci": self._ci,
            "task": self._task,
        }

    def extract(self, event: Event) -> dict[str, str]:
        prefix = event.name.split(".", 1)[0]
        handler = self._extractors.get(prefix)
        if handler is None:
            return {"source": event.source}
        return handler(event)

    # ------------------------------------------------------------------
    # Per-source helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _github(event: Event) -> dict[str, str]:
        repository = dig_str(event.data, "repository", "full_name")
        return {
            "repository": repository,
            "organization": extract_organization(repository),
            "source": event.source,
        }

    @staticmethod
    def _jira(event: Event) -> dict[str, str]:
        project = dig(event.data, "issue", "fields", "project", "key") or dig_str(
            event.data, "project", "key"
        )
        return {"project": str(project), "source": event.source}

    @staticmethod
    def _gitlab(event: Event) -> dict[str, str]:
        return {
            "project": dig_str(event.data, "project", "path_with_namespace"),
            "source": event.source,
        }

    @staticmethod
    def _bitbucket(event: Event) -> dict[str, str]:
        return {
            "repository": dig_str(event.data, "repository", "full_name"),
            "source": event.source,
        }

    @staticmethod
    def _ci(event: Event) -> dict[str, str]:
        return {
            "project": dig_str(event.data, "project"),
            "provider": dig_str(event.data, "provider"),
            "source": event.source,
        }

    @staticmethod
    def _task(event: Event) -> dict[str, str]:
        return {
            "project": dig_str(event.data, "project"),
            "task_type": dig_str(event.data, "type"),
            "source": event.source,
        }
