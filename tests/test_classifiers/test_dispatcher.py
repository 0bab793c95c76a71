from __future__ import annotations

import pytest

from eventmetrics.classifiers.base import BaseClassifier
from eventmetrics.classifiers.dispatcher import MetricClassifier
from eventmetrics.extractors.dimensions import DimensionExtractor
from eventmetrics.schemas.event import Event
from eventmetrics.schemas.metric import MetricDefinition
from tests.factories import make_event


class _ExplodingClassifier(BaseClassifier):
    source = "github"

    def classify(self, event: Event) -> list[MetricDefinition]:
        raise RuntimeError("boom")


class TestMetricClassifier:
    """Routing and error policy of :class:`MetricClassifier`."""

    @pytest.mark.parametrize(
        ("name", "source"),
        [
            ("pagerduty.incident.triggered", "pagerduty"),
            ("sentry.issue", "sentry"),
            ("custom", "internal"),
        ],
    )
    def test_unknown_source_emits_single_generic_metric(
        self, classifier: MetricClassifier, name: str, source: str
    ) -> None:
        """Unrecognised prefixes produce exactly '{name}.total' with only the source dimension."""
        metrics = classifier.classify(make_event(name, {"x": 1}, source=source))
        assert len(metrics) == 1
        assert metrics[0].name == f"{name}.total"
        assert metrics[0].value == 1
        assert metrics[0].dimensions == {"source": source}

    def test_default_sources(self, classifier: MetricClassifier) -> None:
        """Every supported source prefix is registered."""
        assert classifier.sources == ["bitbucket", "ci", "github", "gitlab", "jira", "task"]

    def test_failing_handler_falls_back_to_generic(self) -> None:
        """A classifier that raises is replaced by the generic metric, never propagating."""
        extractor = DimensionExtractor()
        classifier = MetricClassifier(extractor, {"github": _ExplodingClassifier(extractor)})
        metrics = classifier.classify(make_event("github.push", {}))
        assert [m.name for m in metrics] == ["github.push.total"]
        assert metrics[0].dimensions == {"source": "github"}

    def test_non_mapping_data_yields_no_metrics(self, classifier: MetricClassifier) -> None:
        """Structurally broken events (data not a mapping) produce an empty list."""
        event = Event.model_construct(
            id=None,
            name="github.push",
            source="github",
            timestamp=make_event("github.push").timestamp,
            data=["not", "a", "mapping"],
        )
        assert classifier.classify(event) == []

    def test_injected_classifiers_replace_defaults(self) -> None:
        """Only the injected source classifiers are consulted."""
        extractor = DimensionExtractor()
        classifier = MetricClassifier(extractor, {})
        metrics = classifier.classify(make_event("github.push", {"commits": [{}]}))
        assert [m.name for m in metrics] == ["github.push.total"]

    def test_known_source_unknown_subtype_uses_source_dimensions(
        self, classifier: MetricClassifier
    ) -> None:
        """Unhandled subtypes of a known source keep that source's dimensions."""
        metrics = classifier.classify(
            make_event("gitlab.pipeline", {"project": {"path_with_namespace": "g/p"}})
        )
        assert [m.name for m in metrics] == ["gitlab.pipeline.total"]
        assert metrics[0].dimensions == {"project": "g/p", "source": "gitlab"}

    def test_output_carries_plain_string_dimensions(self, classifier: MetricClassifier) -> None:
        """Every dimension value is a string and definitions carry no timestamp."""
        metrics = classifier.classify(
            make_event(
                "github.deployment",
                {"repository": {"full_name": "acme/api"}, "deployment": {"id": 42, "environment": "prod"}},
            )
        )
        for metric in metrics:
            assert metric.timestamp is None
            assert all(isinstance(v, str) for v in metric.dimensions.values())
        assert metrics[0].dimensions["deployment_id"] == "42"
