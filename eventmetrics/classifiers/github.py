from __future__ import annotations

import functools
from typing import Any

from eventmetrics.classifiers.base import BaseClassifier, Handler, metric
from eventmetrics.classifiers.github_push import classify_push
from eventmetrics.classifiers.github_workflows import (
    FALLBACK_ACTION,
    action_metrics,
    classify_workflow_job,
    classify_workflow_run,
)
from eventmetrics.config import settings
from eventmetrics.extractors.dimensions import (
    DimensionExtractor,
    dig,
    dig_str,
    extract_author,
    seconds_between,
)
from eventmetrics.schemas.event import Event
from eventmetrics.schemas.metric import MetricDefinition

_REGISTRATION_ACTIONS = frozenset(
    {"created", "publicized", "privatized", "edited", "renamed", "transferred"}
)


def _minutes_between(start: Any, end: Any) -> int | None:
    seconds = seconds_between(start, end)
    return int(seconds // 60) if seconds is not None else None


class GitHubClassifier(BaseClassifier):
    """Metrics for GitHub webhooks.

    Event names look like ``github.{event}[.{action}]``; when the action is
    not part of the name it is read from ``data.action``.  Handlers are keyed
    by the webhook event (``push``, ``pull_request``, ``workflow_job``...).
    Unknown events produce ``github.{event}.{action or "total"}``.
    """

    source = "github"

    def __init__(
        self,
        extractor: DimensionExtractor | None = None,
        *,
        max_commits: int | None = None,
    ) -> None:
        super().__init__(extractor)
        self._max_commits = max_commits if max_commits is not None else settings.MAX_COMMITS_PER_PUSH

    def _build_handlers(self) -> dict[str, Handler]:
        return {
            "push": self._push,
            "pull_request": self._pull_request,
            "issues": self._issues,
            "check_run": functools.partial(self._check, entity="check_run"),
            "check_suite": functools.partial(self._check, entity="check_suite"),
            "create": functools.partial(self._ref_operation, operation="create"),
            "delete": functools.partial(self._ref_operation, operation="delete"),
            "deployment": self._deployment,
            "deployment_status": self._deployment_status,
            "workflow_run": lambda event, dims: classify_workflow_run(
                event, dims, self.action(event)
            ),
            "workflow_job": lambda event, dims: classify_workflow_job(
                event, dims, self.action(event)
            ),
            "workflow_dispatch": self._workflow_dispatch,
            "repository": self._repository,
            "ci": self._ci,
        }

    # ------------------------------------------------------------------
    # Name parsing
    # ------------------------------------------------------------------

    def _handler_key(self, event: Event) -> str:
        return self.subtype(event).split(".", 1)[0]

    @classmethod
    def action(cls, event: Event) -> str:
        """Action from the event name, then ``data.action``, then ``"total"``."""
        _, _, action = cls.subtype(event).partition(".")
        return action or dig_str(event.data, "action", default=FALLBACK_ACTION)

    def classify(self, event: Event) -> list[MetricDefinition]:
        dims = self._extractor.extract(event)
        key = self._handler_key(event)
        handler = self._handlers.get(key)
        if handler is None:
            entity = key or "event"
            _, _, action = self.subtype(event).partition(".")
            return [metric(f"github.{entity}.{action or 'total'}", 1, dims)]
        return handler(event, dims)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _push(self, event: Event, dims: dict[str, str]) -> list[MetricDefinition]:
        return classify_push(event, dims, max_commits=self._max_commits)

    def _pull_request(self, event: Event, dims: dict[str, str]) -> list[MetricDefinition]:
        action = self.action(event)
        metrics = [
            metric("github.pull_request.total", 1, dims, action=action),
            *action_metrics("pull_request", action, dims),
            metric(
                "github.pull_request.by_author",
                1,
                dims,
                author=extract_author(event.data),
                action=action,
            ),
        ]
        pull_request = dig(event.data, "pull_request")
        if action == "closed" and dig(pull_request, "merged") is True:
            metrics.append(metric("github.pull_request.merged", 1, dims))
            minutes = _minutes_between(
                dig(pull_request, "created_at"), dig(pull_request, "merged_at")
            )
            if minutes is not None:
                metrics.append(metric("github.pull_request.time_to_merge", minutes, dims))
        return metrics

    def _issues(self, event: Event, dims: dict[str, str]) -> list[MetricDefinition]:
        action = self.action(event)
        metrics = [
            metric("github.issues.total", 1, dims, action=action),
            *action_metrics("issues", action, dims),
            metric(
                "github.issues.by_author",
                1,
                dims,
                author=extract_author(event.data),
                action=action,
            ),
        ]
        if action == "closed":
            issue = dig(event.data, "issue")
            minutes = _minutes_between(dig(issue, "created_at"), dig(issue, "closed_at"))
            if minutes is not None:
                metrics.append(metric("github.issues.time_to_close", minutes, dims))
        return metrics

    def _check(self, event: Event, dims: dict[str, str], *, entity: str) -> list[MetricDefinition]:
        check = dig(event.data, entity)
        extra = {}
        if check is not None:
            extra = {
                "status": dig_str(check, "status"),
                "conclusion": dig_str(check, "conclusion"),
            }
        return [metric(f"github.{entity}.{self.action(event)}", 1, dims, **extra)]

    @staticmethod
    def _ref_operation(
        event: Event, dims: dict[str, str], *, operation: str
    ) -> list[MetricDefinition]:
        ref_type = dig_str(event.data, "ref_type")
        extra = {"ref_type": ref_type}
        if ref_type == "branch" and dig(event.data, "ref"):
            extra["branch"] = str(dig(event.data, "ref"))
        return [
            metric(f"github.{operation}.total", 1, dims, **extra),
            metric(f"github.{operation}.{ref_type}", 1, dims, **extra),
        ]

    @staticmethod
    def _deployment_dims(data: dict[str, Any]) -> dict[str, Any]:
        extra: dict[str, Any] = {"environment": dig_str(data, "deployment", "environment")}
        for key, name in (("id", "deployment_id"), ("ref", "ref"), ("task", "task")):
            value = dig(data, "deployment", key)
            if value is not None:
                extra[name] = value
        return extra

    def _deployment(self, event: Event, dims: dict[str, str]) -> list[MetricDefinition]:
        return [
            metric(
                "github.deployment.created",
                1,
                dims,
                **self._deployment_dims(event.data),
            )
        ]

    def _deployment_status(self, event: Event, dims: dict[str, str]) -> list[MetricDefinition]:
        state = dig_str(event.data, "deployment_status", "state")
        dims = {**dims, **self._deployment_dims(event.data), "status": state}
        metrics = [metric("github.deployment_status.updated", 1, dims)]
        if state == "success":
            metrics.append(metric("github.deployment.success", 1, dims))
            minutes = _minutes_between(
                dig(event.data, "deployment", "created_at"),
                dig(event.data, "deployment_status", "created_at"),
            )
            if minutes is not None and minutes > 0:
                metrics.append(metric("github.deployment.time", minutes, dims))
        elif state in ("failure", "error"):
            metrics.append(metric("github.deployment.failure", 1, dims))
        return metrics

    @staticmethod
    def _workflow_dispatch(event: Event, dims: dict[str, str]) -> list[MetricDefinition]:
        return [metric("github.workflow_dispatch.total", 1, dims)]

    def _repository(self, event: Event, dims: dict[str, str]) -> list[MetricDefinition]:
        action = self.action(event)
        metrics = [
            *action_metrics("repository", action, dims),
            metric("github.repository.total", 1, dims),
        ]
        if action in _REGISTRATION_ACTIONS:
            metrics.append(metric("github.repository.registration_event", 1, dims))
        return metrics

    def _ci(self, event: Event, dims: dict[str, str]) -> list[MetricDefinition]:
        _, _, rest = self.subtype(event).partition(".")
        operation, _, status = rest.partition(".")
        data = event.data
        duration = dig(data, "duration")

        if operation == "lead_time":
            value = dig(data, "value", default=0)
            return [metric("github.ci.lead_time", _float_or_zero(value), dims)]

        if operation in ("build", "deploy"):
            status = status or "unknown"
            metrics = [metric(f"github.ci.{operation}.total", 1, dims, status=status)]
            if status != FALLBACK_ACTION:
                metrics.append(metric(f"github.ci.{operation}.{status}", 1, dims))
            if _float_or_zero(duration) > 0:
                metrics.append(
                    metric(f"github.ci.{operation}.duration", _float_or_zero(duration), dims)
                )
            if operation == "deploy" and status == "failed":
                metrics.append(metric("github.ci.deploy.incident", 1, dims))
            return metrics

        return [metric(f"github.ci.{operation or 'event'}.{status or 'generic'}", 1, dims)]


def _float_or_zero(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
