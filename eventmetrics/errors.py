from __future__ import annotations


class MetricsError(Exception):
    """Base class for every error raised by :mod:`eventmetrics`."""


class MetricStoreError(MetricsError):
    """The metric store could not complete an operation.

    Raised by store adapters when the backing storage is unreachable or the
    driver reports a failure.  Aggregation runs let it propagate so the whole
    window can be retried.
    """


class AggregateConflictError(MetricStoreError):
    """Two writers tried to create the same aggregate record concurrently."""


class InvalidAlertTransition(MetricsError, ValueError):
    """An alert status or severity change that the lifecycle does not allow."""
