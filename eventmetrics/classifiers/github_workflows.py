from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from eventmetrics.classifiers.base import metric
from eventmetrics.extractors.dimensions import dig, dig_str, seconds_between
from eventmetrics.schemas.event import Event
from eventmetrics.schemas.metric import MetricDefinition

_TEST_KEYWORDS = ("test", "spec", "rspec", "jest", "pytest", "unit", "integration", "e2e")
_DEPLOY_KEYWORDS = ("deploy", "publish", "release", "push to")
_DEPLOY_TARGET_RE = re.compile(r"to\s+(prod|production|staging|dev|development)\b")
_FAILED_CONCLUSIONS = frozenset({"failure", "cancelled", "timed_out"})
FALLBACK_ACTION = "total"


def action_metrics(
    entity: str, action: str, dims: dict[str, str], **extra: Any
) -> list[MetricDefinition]:
    """The per-action counter, skipped when the action fell back to ``total``."""
    if action == FALLBACK_ACTION:
        return []
    return [metric(f"github.{entity}.{action}", 1, dims, **extra)]


def _run_dims(run: Mapping[str, Any] | None) -> dict[str, str]:
    if run is None:
        return {}
    return {
        "workflow_name": dig_str(run, "name"),
        "conclusion": dig_str(run, "conclusion"),
        "status": dig_str(run, "status"),
    }


def classify_workflow_run(
    event: Event, dims: dict[str, str], action: str
) -> list[MetricDefinition]:
    run = dig(event.data, "workflow_run")
    run = run if isinstance(run, Mapping) else None
    extra = _run_dims(run)
    conclusion = dig_str(run, "conclusion")

    metrics = [
        metric("github.workflow_run.total", 1, dims, **extra, action=action),
        *action_metrics("workflow_run", action, dims, **extra),
        metric(f"github.workflow_run.conclusion.{conclusion}", 1, dims),
    ]
    if run is not None and action == "completed":
        duration = seconds_between(dig(run, "created_at"), dig(run, "updated_at"))
        if duration is not None:
            metrics.append(
                metric(
                    "github.workflow_run.duration",
                    int(duration),
                    dims,
                    workflow_name=extra["workflow_name"],
                    conclusion=extra["conclusion"],
                )
            )
    return metrics


def classify_workflow_job(
    event: Event, dims: dict[str, str], action: str
) -> list[MetricDefinition]:
    job = dig(event.data, "workflow_job")
    if not isinstance(job, Mapping):
        return [
            metric("github.workflow_job.total", 1, dims, action=action),
            *action_metrics("workflow_job", action, dims),
        ]

    dims = {
        **dims,
        "workflow_name": dig_str(job, "workflow_name"),
        "branch": dig_str(job, "head_branch"),
    }
    extra = {
        "job_name": dig_str(job, "name"),
        "conclusion": dig_str(job, "conclusion"),
        "status": dig_str(job, "status"),
    }
    metrics = [
        metric("github.workflow_job.total", 1, dims, **extra, action=action),
        *action_metrics("workflow_job", action, dims, **extra),
    ]

    conclusion = dig(job, "conclusion")
    if conclusion:
        metrics.append(metric(f"github.workflow_job.conclusion.{conclusion}", 1, dims, **extra))
        if action == "completed":
            duration = seconds_between(dig(job, "started_at"), dig(job, "completed_at"))
            if duration is not None:
                metrics.append(metric("github.workflow_job.duration", int(duration), dims, **extra))

    steps = dig(job, "steps")
    if action == "completed" and isinstance(steps, list) and steps:
        metrics.extend(analyze_steps(steps, {**dims, "job_name": extra["job_name"]}))
    return metrics


# ---------------------------------------------------------------------------
# Step analysis
# ---------------------------------------------------------------------------


def _step_name(step: Mapping[str, Any]) -> str:
    return str(dig(step, "name", default="")).lower()


def is_test_step(step: Mapping[str, Any]) -> bool:
    name = _step_name(step)
    return any(keyword in name for keyword in _TEST_KEYWORDS)


def is_deploy_step(step: Mapping[str, Any]) -> bool:
    name = _step_name(step)
    return any(keyword in name for keyword in _DEPLOY_KEYWORDS) or bool(
        _DEPLOY_TARGET_RE.search(name)
    )


def _step_conclusion(step: Mapping[str, Any]) -> str:
    return str(dig(step, "conclusion", default="")).lower()


def _step_duration(step: Mapping[str, Any]) -> int | None:
    duration = seconds_between(dig(step, "started_at"), dig(step, "completed_at"))
    return int(duration) if duration is not None else None


def analyze_steps(steps: list[Any], dims: dict[str, str]) -> list[MetricDefinition]:
    """Per-step and per-job metrics for test and deployment steps of a finished job.

    Steps are recognised by keywords in their names.  A job containing at
    least one deployment step counts as a deployment attempt
    (``dora.deployment.attempt``) and as a failure when any of those steps
    did not succeed.
    """
    mapped = [s for s in steps if isinstance(s, Mapping)]
    test_steps = [s for s in mapped if is_test_step(s)]
    deploy_steps = [s for s in mapped if is_deploy_step(s)]

    metrics: list[MetricDefinition] = []
    metrics.extend(_step_metrics("test", test_steps, dims))
    metrics.extend(_step_metrics("deploy", deploy_steps, dims))
    if test_steps:
        metrics.extend(_job_metrics("test", test_steps, dims))
    if deploy_steps:
        metrics.extend(_job_metrics("deploy", deploy_steps, dims))
    return metrics


def _step_metrics(
    kind: str, steps: list[Mapping[str, Any]], dims: dict[str, str]
) -> list[MetricDefinition]:
    metrics: list[MetricDefinition] = []
    for step in steps:
        step_dims = {**dims, "step_name": dig_str(step, "name")}
        duration = _step_duration(step)
        if duration is not None:
            metrics.append(metric(f"github.workflow_step.{kind}.duration", duration, step_dims))
        conclusion = _step_conclusion(step)
        if conclusion == "success":
            metrics.append(metric(f"github.workflow_step.{kind}.success", 1, step_dims))
        elif conclusion in _FAILED_CONCLUSIONS:
            metrics.append(metric(f"github.workflow_step.{kind}.failure", 1, step_dims))
    return metrics


def _job_metrics(
    kind: str, steps: list[Mapping[str, Any]], dims: dict[str, str]
) -> list[MetricDefinition]:
    total_duration = sum(d for d in (_step_duration(s) for s in steps) if d is not None)
    succeeded = all(_step_conclusion(s) == "success" for s in steps)
    dora_name = "deployment" if kind == "deploy" else "test"
    dora_attempt = "attempt" if kind == "deploy" else "run"

    metrics: list[MetricDefinition] = []
    if total_duration > 0:
        metrics.append(metric(f"github.ci.{kind}.duration", total_duration, dims))
    metrics.append(metric(f"github.ci.{kind}.success", 1 if succeeded else 0, dims))
    if not succeeded:
        metrics.append(metric(f"github.ci.{kind}.failed", 1, dims))
    metrics.append(metric(f"dora.{dora_name}.{dora_attempt}", 1, dims))
    if not succeeded:
        metrics.append(metric(f"dora.{dora_name}.failure", 1, dims))
    return metrics
