# backend/recovery_engine/remediator/synthesizer.py
from __future__ import annotations
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set, Tuple

from .. import config
from ..detectors.aggregator import distinct_sources, summarize
from ..errors import EmptyCandidateSetError
from ..models import (
    ActionCandidate,
    ActionId,
    PolicyConstraint,
    RecoveryActionPlan,
    RecoveryWindow,
    Signal,
    SignalSummary,
    clamp01,
    new_id,
    utcnow,
)
from ..planner.graph import check_structure, layer, order_by_layers, transitive_dependents

log = logging.getLogger(__name__)


def applicable_candidates(
    signals: Sequence[Signal],
    candidates: Sequence[ActionCandidate],
) -> Tuple[List[ActionCandidate], Set[ActionId]]:
    """Drop candidates gated on a signal that was not observed, plus everything depending on them."""
    seen = {s.signal_id for s in signals}
    gated = [
        c.action_id for c in candidates
        if c.dependency.required_signal_id and c.dependency.required_signal_id not in seen
    ]
    if not gated:
        return list(candidates), set()
    dropped = set(gated) | transitive_dependents(candidates, gated)
    log.info("dropping %d candidate(s) without their required signal: %s", len(dropped), sorted(dropped))
    return [c for c in candidates if c.action_id not in dropped], dropped


def plan_confidence(action_count: int) -> float:
    # each extra step compounds execution risk
    return round(clamp01(config.CONFIDENCE_START - config.CONFIDENCE_DECAY * action_count), 4)


def _rationale(signals: Sequence[Signal], summary: SignalSummary, sequence: Sequence[ActionCandidate]) -> str:
    sources = distinct_sources(signals)
    shown = sources[: config.RATIONALE_MAX_SOURCES]
    src = ", ".join(shown) if shown else "none"
    if len(sources) > len(shown):
        src += f" (+{len(sources) - len(shown)} more)"
    peak = summary.peak_severity or "n/a"
    return (
        f"{summary.count} signal(s), {len(sequence)} action(s); "
        f"peak severity {peak}; sources: {src}"
    )


def synthesize(
    signals: Sequence[Signal],
    candidates: Sequence[ActionCandidate],
    policy: PolicyConstraint,
    window: RecoveryWindow,
    *,
    plan_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> RecoveryActionPlan:
    """
    Build an ordered, windowed plan from signals and remediation candidates.

    - sequence follows dependency layers; shorter actions first inside a layer
    - estimated completion is the critical-path length, not the flat sum
    - confidence starts at CONFIDENCE_START and decays per action
    Raises a StructuralError for an empty candidate set or a broken graph.
    """
    signals = list(signals or [])
    candidates = list(candidates or [])
    if not candidates:
        raise EmptyCandidateSetError()
    check_structure(candidates)

    kept, dropped = applicable_candidates(signals, candidates)
    if not kept:
        raise EmptyCandidateSetError(
            f"no applicable candidates: all {len(dropped)} require signals that were not observed"
        )

    layering = layer(kept)
    sequence = order_by_layers(kept, layering)

    layers: Dict[int, List[ActionId]] = {}
    for c in sequence:
        layers.setdefault(layering.layer_of(c.action_id), []).append(c.action_id)

    summary = summarize(signals)
    plan = RecoveryActionPlan(
        plan_id=plan_id or new_id(),
        scenario_id=policy.scenario_id,
        tenant_id=policy.tenant_id,
        sequence=sequence,
        layers=[layers[i] for i in sorted(layers)],
        has_cycle=layering.has_cycle,
        estimated_completion_minutes=layering.critical_path_minutes,
        aggregate_confidence=plan_confidence(len(sequence)),
        rationale=_rationale(signals, summary, sequence),
        window=window,
        target_rto_minutes=policy.target_rto_minutes,
        created_at_utc=created_at or utcnow(),
    )
    log.info(
        "synthesized plan %s: %d action(s) in %d layer(s), %.1f min, cycle=%s",
        plan.plan_id, len(sequence), len(plan.layers), plan.estimated_completion_minutes, plan.has_cycle,
    )
    return plan
