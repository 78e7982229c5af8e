# backend/recovery_engine/detectors/aggregator.py
from __future__ import annotations
from collections import Counter, OrderedDict
from typing import Dict, Iterable, List, Optional, Tuple

from ..models import SEVERITY_WEIGHT, Signal, SignalCluster, SignalDensity, SignalSummary, clamp01


def severity_weight(severity: Optional[str]) -> int:
    return SEVERITY_WEIGHT.get((severity or "").lower(), 0)


def _peak(signals: Iterable[Signal]) -> Optional[str]:
    """Highest-weight severity; on a tie the earliest signal wins."""
    best: Optional[Signal] = None
    for s in signals:
        if best is None or severity_weight(s.severity) > severity_weight(best.severity):
            best = s
    return best.severity if best else None


def _counts(keys: Iterable[str]) -> Dict[str, int]:
    # Counter keeps first-seen insertion order, which keeps reports stable
    return dict(Counter(keys))


def distinct_sources(signals: Iterable[Signal]) -> List[str]:
    seen: "OrderedDict[str, None]" = OrderedDict()
    for s in signals:
        seen.setdefault(s.fingerprint.source, None)
    return list(seen)


def summarize(signals: Iterable[Signal]) -> SignalSummary:
    """Collapse raw signals into counts, mean confidence and peak severity.

    An empty input yields a zeroed summary with ``peak_severity=None``.
    """
    sigs = list(signals or [])
    if not sigs:
        return SignalSummary(count=0, unique_entities=0, average_confidence=0.0)

    avg = sum(s.confidence for s in sigs) / len(sigs)
    density = SignalDensity(
        by_entity=_counts(s.entity for s in sigs),
        by_source=_counts(s.fingerprint.source for s in sigs),
        by_severity=_counts(s.severity for s in sigs),
    )
    return SignalSummary(
        count=len(sigs),
        unique_entities=len(density.by_entity),
        average_confidence=clamp01(avg),
        peak_severity=_peak(sigs),
        density=density,
    )


def build_clusters(signals: Iterable[Signal]) -> List[SignalCluster]:
    """Group by (entity, fingerprint code), largest cluster first.

    ``sorted`` is stable, so equally sized clusters keep first-seen order.
    """
    groups: "OrderedDict[Tuple[str, str], List[Signal]]" = OrderedDict()
    for s in signals or []:
        groups.setdefault((s.entity, s.fingerprint.code), []).append(s)

    clusters = [
        SignalCluster(entity=entity, code=code, dominant_severity=_peak(members), members=members)
        for (entity, code), members in groups.items()
    ]
    return sorted(clusters, key=lambda c: c.size, reverse=True)
