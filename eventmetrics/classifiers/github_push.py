from __future__ import annotations

import logging
import posixpath
import re
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from eventmetrics.classifiers.base import metric
from eventmetrics.extractors.dimensions import (
    UNKNOWN,
    dig,
    extract_author,
    parse_timestamp,
)
from eventmetrics.schemas.event import Event
from eventmetrics.schemas.metric import MetricDefinition

logger = logging.getLogger(__name__)

CONVENTIONAL_COMMIT_RE = re.compile(
    r"^(?P<type>feat|fix|docs|style|refactor|perf|test|build|ci|chore|revert)"
    r"(?:\((?P<scope>[^)]*)\))?"
    r"(?P<breaking>!)?:\s*(?P<description>.+)$",
    re.IGNORECASE,
)

_BREAKING_FOOTER = "BREAKING CHANGE"


@dataclass(frozen=True)
class ConventionalCommit:
    """The parsed header of a conventional commit message."""

    type: str
    scope: str | None
    description: str
    breaking: bool


def parse_conventional_commit(message: Any) -> ConventionalCommit | None:
    """Parse ``type(scope)!: description`` from the first line of *message*.

    A ``BREAKING CHANGE`` footer anywhere in the message also marks the
    commit as breaking.  Returns ``None`` for non-string or non-conventional
    messages.
    """
    if not isinstance(message, str) or not message.strip():
        return None
    header = message.strip().splitlines()[0]
    match = CONVENTIONAL_COMMIT_RE.match(header)
    if match is None:
        return None
    scope = (match.group("scope") or "").strip() or None
    return ConventionalCommit(
        type=match.group("type").lower(),
        scope=scope,
        description=match.group("description").strip(),
        breaking=bool(match.group("breaking")) or _BREAKING_FOOTER in message,
    )


def top_level_directory(path: str) -> str:
    """``"src/app/x.py"`` -> ``"src"``; files at the repository root -> ``"root"``."""
    head, sep, _ = path.strip("/").partition("/")
    return head if sep and head else "root"


def file_extension(path: str) -> str:
    """Lower-cased extension without the dot, or ``"none"``."""
    _, ext = posixpath.splitext(posixpath.basename(path))
    return ext[1:].lower() if len(ext) > 1 else "none"


@dataclass
class _FileChanges:
    added: set[str] = field(default_factory=set)
    modified: set[str] = field(default_factory=set)
    removed: set[str] = field(default_factory=set)

    def record(self, commit: Mapping[str, Any]) -> None:
        for key, bucket in (
            ("added", self.added),
            ("modified", self.modified),
            ("removed", self.removed),
        ):
            paths = dig(commit, key)
            if isinstance(paths, list):
                bucket.update(p for p in paths if isinstance(p, str) and p)

    @property
    def all_paths(self) -> set[str]:
        return self.added | self.modified | self.removed


def _commit_author(commit: Mapping[str, Any], fallback: str) -> str:
    return str(
        dig(commit, "author", "username")
        or dig(commit, "author", "name")
        or dig(commit, "author", "email")
        or fallback
    )


def _stat(commit: Mapping[str, Any], key: str) -> int:
    value = dig(commit, "stats", key)
    if isinstance(value, bool) or not isinstance(value, int | float):
        return 0
    return int(value)


def _branch_label(ref: Any) -> str:
    if not isinstance(ref, str) or not ref:
        return UNKNOWN
    if ref.startswith("refs/tags/"):
        return f"tag:{ref[len('refs/tags/'):]}"
    if ref.startswith("refs/heads/"):
        return ref[len("refs/heads/"):]
    return ref


def _push_author(data: Mapping[str, Any]) -> str:
    return str(
        dig(data, "head_commit", "author", "name")
        or dig(data, "head_commit", "author", "email")
        or extract_author(data)
    )


def classify_push(
    event: Event,
    dims: dict[str, str],
    *,
    max_commits: int,
) -> list[MetricDefinition]:
    """Derive every metric for a ``github.push`` event.

    The ``total`` and ``commits`` metrics are always emitted.  Per-commit
    analysis (conventional commit types, breaking changes, daily volume,
    file changes, line stats) runs over at most *max_commits* commits; a
    commit that cannot be analysed is logged and skipped without affecting
    the others.
    """
    data = event.data
    raw_commits = dig(data, "commits")
    commits: list[Any] = raw_commits if isinstance(raw_commits, list) else []

    metrics = [
        metric("github.push.total", 1, dims),
        metric("github.push.commits", len(commits), dims),
        metric("github.push.branch_activity", 1, dims, branch=_branch_label(dig(data, "ref"))),
        metric("github.push.by_author", 1, dims, author=_push_author(data)),
    ]

    if len(commits) > max_commits:
        logger.warning(
            "classify_push: %s pushed %d commits; analysing the first %d",
            dims.get("repository", UNKNOWN),
            len(commits),
            max_commits,
        )
        commits = commits[:max_commits]

    pusher = extract_author(data)
    changes = _FileChanges()
    daily_volume: Counter[str] = Counter()
    additions = 0
    deletions = 0

    for index, commit in enumerate(commits):
        try:
            if not isinstance(commit, Mapping):
                raise TypeError(f"commit entry is {type(commit).__name__}, not a mapping")
            metrics.extend(_commit_metrics(commit, dims, pusher))
            committed_at = parse_timestamp(dig(commit, "timestamp"))
            if committed_at is not None:
                daily_volume[committed_at.date().isoformat()] += 1
            changes.record(commit)
            additions += _stat(commit, "additions")
            deletions += _stat(commit, "deletions")
        except Exception:  # noqa: BLE001
            logger.warning(
                "classify_push: skipping malformed commit %d in push to %s",
                index,
                dims.get("repository", UNKNOWN),
                exc_info=True,
            )

    for day, count in sorted(daily_volume.items()):
        metrics.append(metric("github.commit_volume.daily", count, dims, date=day))

    metrics.extend(_file_metrics(changes, dims))

    if additions:
        metrics.append(metric("github.push.code_additions", additions, dims))
    if deletions:
        metrics.append(metric("github.push.code_deletions", deletions, dims))
    if additions + deletions:
        metrics.append(metric("github.push.code_churn", additions + deletions, dims))

    return metrics


def _commit_metrics(
    commit: Mapping[str, Any],
    dims: dict[str, str],
    pusher: str,
) -> list[MetricDefinition]:
    parsed = parse_conventional_commit(dig(commit, "message"))
    if parsed is None:
        return []
    scope = parsed.scope or "none"
    metrics = [
        metric(
            "github.push.commit_type",
            1,
            dims,
            type=parsed.type,
            scope=scope,
            conventional=True,
        )
    ]
    if parsed.breaking:
        metrics.append(
            metric(
                "github.push.breaking_change",
                1,
                dims,
                type=parsed.type,
                scope=scope,
                author=_commit_author(commit, pusher),
            )
        )
    return metrics


def _file_metrics(changes: _FileChanges, dims: dict[str, str]) -> list[MetricDefinition]:
    metrics: list[MetricDefinition] = []
    for name, paths in (
        ("github.push.files_added", changes.added),
        ("github.push.files_modified", changes.modified),
        ("github.push.files_removed", changes.removed),
    ):
        if paths:
            metrics.append(metric(name, len(paths), dims))

    paths = changes.all_paths
    directories = Counter(top_level_directory(p) for p in paths)
    extensions = Counter(file_extension(p) for p in paths)

    for directory, count in sorted(directories.items()):
        metrics.append(metric("github.push.directory_changes", count, dims, directory=directory))
    for extension, count in sorted(extensions.items()):
        metrics.append(metric("github.push.filetype_changes", count, dims, filetype=extension))
    return metrics
