from __future__ import annotations
import logging
from datetime import datetime
from typing import List, Optional, Sequence

from .detectors.aggregator import build_clusters, summarize
from .models import (
    ActionCandidate,
    PipelineResult,
    PolicyConstraint,
    RecoveryActionPlan,
    RecoveryWindow,
    Signal,
    SignalSummary,
    SimulationResult,
    StepFault,
    ValidationContext,
    ValidationResult,
)
from .planner.graph import layer
from .policy.policy_guard import evaluate, resolve_context, with_violations
from .remediator.synthesizer import synthesize
from .simulator.simulator import simulate

log = logging.getLogger(__name__)


def aggregate_signals(signals: Sequence[Signal]) -> SignalSummary:
    return summarize(signals)


def synthesize_plan(
    signals: Sequence[Signal],
    candidates: Sequence[ActionCandidate],
    policy: PolicyConstraint,
    window: RecoveryWindow,
    *,
    plan_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> RecoveryActionPlan:
    """Raises a StructuralError when no plan can be built."""
    return synthesize(signals, candidates, policy, window, plan_id=plan_id, created_at=created_at)


def validate_plan(
    plan: RecoveryActionPlan,
    policy: PolicyConstraint,
    context: Optional[ValidationContext] = None,
) -> ValidationResult:
    return evaluate(plan, policy, context)


def simulate_plan(
    plan: RecoveryActionPlan,
    policy: PolicyConstraint,
    context: Optional[ValidationContext] = None,
    faults: Sequence[StepFault] = (),
) -> SimulationResult:
    return simulate(plan, policy, context=context, faults=faults)


def _policy_summary(validation: ValidationResult) -> str:
    errors, warnings = len(validation.errors), len(validation.warnings)
    if not errors and not warnings:
        return "All policies passed"
    verdict = "allowed" if validation.allowed else "blocked"
    return f"{verdict}: {errors} error(s), {warnings} warning(s)"


def run_all(
    signals: Sequence[Signal],
    candidates: Sequence[ActionCandidate],
    policy: PolicyConstraint,
    window: RecoveryWindow,
    context: Optional[ValidationContext] = None,
    faults: Sequence[StepFault] = (),
    *,
    plan_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> PipelineResult:
    """End-to-end pass:
       1) summarize + cluster signals
       2) synthesize a layered plan (structural errors propagate)
       3) validate it against the policy
       4) simulate it, injecting any faults, and fold the post-run RTO
          check back into the verdict
    """
    summary = summarize(signals)
    clusters = build_clusters(signals)
    plan = synthesize(signals, candidates, policy, window, plan_id=plan_id, created_at=created_at)
    ctx = resolve_context(plan, context)
    validation = evaluate(plan, policy, ctx)
    simulation = simulate(plan, policy, context=ctx, faults=faults)
    validation = with_violations(plan, validation, simulation.violations)

    result = PipelineResult(
        summary=summary,
        clusters=clusters,
        layering=layer(plan.sequence),
        plan=plan,
        validation=validation,
        simulation=simulation,
        policy_summary=_policy_summary(validation),
    )
    log.info("pipeline finished for scenario %s: %s", plan.scenario_id, result.policy_summary)
    return result
