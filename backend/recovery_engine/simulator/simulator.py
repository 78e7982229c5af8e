# backend/recovery_engine/simulator/simulator.py
from __future__ import annotations
import logging
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from .. import config
from ..models import (
    ActionCandidate,
    PolicyConstraint,
    RecoveryActionPlan,
    SimulationResult,
    StepFault,
    StepOutcome,
    ValidationContext,
    clamp01,
)
from ..planner.graph import layer
from ..policy.policy_guard import check_simulated_rto, concurrency_limit, evaluate, resolve_context

log = logging.getLogger(__name__)

# completed and canceled are both terminal; draft is reachable only by rejection
_WINDOW_ORDER = {"draft": 0, "simulating": 1, "approved": 2, "executing": 3, "completed": 4, "canceled": 4}


class _Lifecycle:
    def __init__(self, notes: List[str]):
        self.state = "draft"
        self._notes = notes

    def move(self, to: str) -> None:
        if to != "draft" and _WINDOW_ORDER[to] < _WINDOW_ORDER[self.state]:
            raise ValueError(f"window state cannot go back from {self.state} to {to}")
        if to != self.state:
            self._notes.append(f"window {self.state} -> {to}")
        self.state = to


def _batches(items: Sequence[ActionCandidate], size: int) -> Iterable[Sequence[ActionCandidate]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


def residual_risk(incidents: int, completed: int, total: int) -> float:
    """incident pressure plus a weighted penalty for work left undone, rounded to 3 places."""
    pressure = incidents / max(1, total)
    ratio = clamp01(completed / max(1, total))
    return clamp01(round(pressure + (1 - ratio) * config.PENDING_RISK_WEIGHT, 3))


def run_state_of(states: Iterable[str]) -> str:
    states = list(states)
    if any(s == "failed" for s in states):
        return "failed"
    if states and all(s == "completed" for s in states):
        return "completed"
    if any(s == "stalled" for s in states):
        return "stalled"
    if any(s == "queued" for s in states):
        return "queued"
    return "executing"


def simulate(
    plan: RecoveryActionPlan,
    policy: PolicyConstraint,
    context: Optional[ValidationContext] = None,
    faults: Sequence[StepFault] = (),
) -> SimulationResult:
    """
    Forecast a plan's execution layer by layer and score what is left at risk.

    The plan is validated first; a rejected plan falls back to 'draft' but is
    still walked so the caller gets a forecast. Steps inside a layer run in
    batches of ``concurrency_limit(policy)``; a batch takes as long as its
    slowest step. Faults inject incidents, failures (retried up to
    ``max_retries_per_step``) or stalls; a failed step never stops the pass,
    its dependents just stay queued.
    """
    notes: List[str] = []
    window = _Lifecycle(notes)
    window.move("simulating")

    ctx = resolve_context(plan, context)
    verdict = evaluate(plan, policy, ctx)
    for v in verdict.violations:
        notes.append(f"[{v.severity}] {v.constraint}: {v.detail}")
    if verdict.allowed:
        window.move("approved")
        window.move("executing")
    else:
        notes.append("validation failed; plan rejected back to draft, forecast only")
        window.move("draft")

    by_fault: Dict[str, StepFault] = {}
    known = set(plan.action_ids)
    for f in faults or ():
        if f.action_id not in known:
            notes.append(f"ignored fault for unknown action {f.action_id}")
            continue
        by_fault[f.action_id] = f

    layering = layer(plan.sequence)
    layer_index = {a: l.index for l in layering.layers for a in l.action_ids}
    limit = concurrency_limit(policy)
    retries = policy.max_retries_per_step

    outcomes: Dict[str, StepOutcome] = {}
    incidents = 0
    clock = plan.window.start_utc
    elapsed_ms = 0

    for l in layering.layers:
        members = [c for c in plan.sequence if layer_index[c.action_id] == l.index]
        for batch in _batches(members, limit):
            batch_ms = 0
            for c in batch:
                held = [d for d in c.depends_on if getattr(outcomes.get(d), "state", None) != "completed"]
                if held:
                    outcomes[c.action_id] = StepOutcome(
                        action_id=c.action_id, layer=l.index, state="queued",
                        expected_duration_ms=c.expected_duration_ms,
                    )
                    notes.append(f"{c.action_id} held in queue: dependencies not completed ({', '.join(held)})")
                    continue

                fault = by_fault.get(c.action_id)
                attempts, state = 1, "completed"
                if fault is not None and fault.kind == "fail":
                    if fault.failed_attempts <= retries:
                        attempts = fault.failed_attempts + 1
                        notes.append(f"{c.action_id} completed after {attempts} attempt(s)")
                    else:
                        attempts, state = retries + 1, "failed"
                        incidents += 1
                        notes.append(f"{c.action_id} failed after {attempts} attempt(s)")
                elif fault is not None and fault.kind == "incident":
                    incidents += 1
                    notes.append(f"{c.action_id} completed with an incident")
                elif fault is not None and fault.kind == "stall":
                    state = "stalled"
                    notes.append(f"{c.action_id} stalled")

                duration_ms = c.expected_duration_ms * attempts
                outcomes[c.action_id] = StepOutcome(
                    action_id=c.action_id,
                    layer=l.index,
                    state=state,
                    attempts=attempts,
                    started_at_utc=clock,
                    completed_at_utc=None if state == "stalled" else clock + timedelta(milliseconds=duration_ms),
                    expected_duration_ms=c.expected_duration_ms,
                )
                batch_ms = max(batch_ms, duration_ms)
            clock += timedelta(milliseconds=batch_ms)
            elapsed_ms += batch_ms

    steps = [outcomes[a] for a in plan.action_ids]
    completed = sum(1 for s in steps if s.state == "completed")
    run_state = run_state_of(s.state for s in steps)
    risk = residual_risk(incidents, completed, len(steps))

    elapsed_minutes = elapsed_ms / 60_000
    # the RTO buffer has to hold for the simulated timeline too
    post_run = check_simulated_rto(plan, policy, ctx, elapsed_minutes)
    for v in post_run:
        notes.append(f"[{v.severity}] {v.constraint}: {v.detail} (simulated)")

    if verdict.allowed:
        if run_state == "failed" or post_run:
            window.move("canceled")
        elif run_state == "completed":
            window.move("completed")

    notes.append(
        f"run {run_state}: {completed}/{len(steps)} step(s) completed in {elapsed_minutes:g} min, "
        f"{incidents} incident(s), risk {risk}"
    )
    log.info("simulated plan %s: run=%s window=%s risk=%s", plan.plan_id, run_state, window.state, risk)

    return SimulationResult(
        scenario_id=plan.scenario_id,
        tenant_id=policy.tenant_id,
        action_plan=plan,
        final_risk_score=risk,
        window_state=window.state,
        run_state=run_state,
        elapsed_minutes=elapsed_minutes,
        incidents_detected=incidents,
        steps=steps,
        violations=post_run,
        notes=notes,
    )
