from __future__ import annotations

from eventmetrics.classifiers.base import BaseClassifier, EventClassifier
from eventmetrics.classifiers.dispatcher import MetricClassifier, default_classifiers

__all__ = [
    "BaseClassifier",
    "EventClassifier",
    "MetricClassifier",
    "default_classifiers",
]
