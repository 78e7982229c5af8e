# backend/recovery_engine/tests/test_aggregator.py
import pytest

from recovery_engine.detectors.aggregator import build_clusters, distinct_sources, summarize


def test_empty_input_is_zeroed():
    s = summarize([])
    assert s.count == 0
    assert s.unique_entities == 0
    assert s.average_confidence == 0.0
    assert s.peak_severity is None


def test_peak_severity_and_mean(sig):
    signals = [
        sig(severity="high", confidence=0.5, minute=0),
        sig(severity="critical", confidence=0.9, minute=1),
        sig(entity="ledger", severity="low", confidence=0.7, minute=2),
    ]
    s = summarize(signals)
    assert s.count == 3
    assert s.unique_entities == 2
    assert s.peak_severity == "critical"
    assert s.average_confidence == pytest.approx(0.7)


def test_density_maps(sig):
    signals = [
        sig(source="prometheus", severity="high", minute=0),
        sig(source="tracing", severity="high", minute=1),
        sig(entity="ledger", source="prometheus", severity="medium", minute=2),
    ]
    d = summarize(signals).density
    assert d.by_entity == {"payments": 2, "ledger": 1}
    assert d.by_source == {"prometheus": 2, "tracing": 1}
    assert d.by_severity == {"high": 2, "medium": 1}


def test_distinct_sources_keep_first_seen_order(sig):
    signals = [sig(source="tracing", minute=0), sig(source="logs", minute=1), sig(source="tracing", minute=2)]
    assert distinct_sources(signals) == ["tracing", "logs"]


def test_clusters_largest_first_then_first_seen(sig):
    signals = [
        sig(entity="a", code="x", minute=0),
        sig(entity="b", code="y", minute=1),
        sig(entity="b", code="y", severity="critical", minute=2),
        sig(entity="a", code="z", minute=3),
    ]
    clusters = build_clusters(signals)
    assert [(c.entity, c.code, c.size) for c in clusters] == [("b", "y", 2), ("a", "x", 1), ("a", "z", 1)]
    assert clusters[0].dominant_severity == "critical"


def test_summarize_is_idempotent(sig):
    signals = [sig(minute=0), sig(severity="critical", minute=1)]
    assert summarize(signals) == summarize(signals)
