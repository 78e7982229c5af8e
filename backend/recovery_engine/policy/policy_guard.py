# backend/recovery_engine/policy/policy_guard.py
from __future__ import annotations
import logging
import math
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from .. import config
from ..models import (
    ApprovalPolicy,
    GraphLayering,
    PolicyConstraint,
    RecoveryActionPlan,
    RecoveryWindow,
    ValidationContext,
    ValidationResult,
    Violation,
)
from ..planner.graph import layer

log = logging.getLogger(__name__)

# Constraint codes, in evaluation order
MAX_CONCURRENCY = "maxConcurrency"
ALLOWED_CATEGORIES = "allowedCategories"
SLA_MINUTES = "slaMinutes"
BLACKOUT_WINDOWS = "blackoutWindows"
MISSING_APPROVALS = "missingApprovals"
INVALID_RTO = "invalid-rto"
DEPENDENCY_CYCLE = "dependencyCycle"
OVERLAPPING_WINDOWS = "overlappingWindows"


def _violation(code: str, msg: str, severity: str = "error") -> Violation:
    return Violation(constraint=code, detail=msg, severity=severity)


def concurrency_limit(policy: PolicyConstraint) -> int:
    """How many actions of one layer an executor may run at once."""
    if not policy.allow_parallelism:
        return 1
    limit = policy.max_concurrency
    if policy.max_wall_clock_minutes is not None:
        slots = policy.max_wall_clock_minutes // max(1, config.MINUTES_PER_SLOT)
        limit = min(limit, max(1, min(config.CONCURRENCY_CAP, slots)))
    return max(1, limit)


def check_concurrency(policy: PolicyConstraint, layering: GraphLayering) -> List[Violation]:
    v: List[Violation] = []
    for l in layering.layers:
        if len(l.action_ids) > policy.max_concurrency:
            v.append(_violation(
                MAX_CONCURRENCY,
                f"layer {l.index} runs {len(l.action_ids)} actions in parallel "
                f"({', '.join(l.action_ids)}); limit is {policy.max_concurrency}",
            ))
    return v


def check_categories(plan: RecoveryActionPlan, policy: PolicyConstraint) -> List[Violation]:
    allowed = set(policy.allowed_categories)
    offending: List[str] = []
    actions: List[str] = []
    for c in plan.sequence:
        if c.category not in allowed:
            actions.append(c.action_id)
            if c.category not in offending:
                offending.append(c.category)
    if not offending:
        return []
    return [_violation(
        ALLOWED_CATEGORIES,
        f"categories not allowed: {', '.join(offending)} (actions: {', '.join(actions)}); "
        f"allowed: {sorted(allowed)}",
    )]


def check_sla(plan: RecoveryActionPlan, policy: PolicyConstraint) -> List[Violation]:
    if plan.estimated_completion_minutes > policy.sla_minutes:
        return [_violation(
            SLA_MINUTES,
            f"estimated completion {plan.estimated_completion_minutes:g} min "
            f"exceeds SLA of {policy.sla_minutes:g} min",
            severity="warning",
        )]
    return []


def check_blackout(policy: PolicyConstraint, now: datetime) -> List[Violation]:
    v: List[Violation] = []
    for w in policy.blackout_windows:
        if w.contains(now):
            why = f" ({w.reason})" if w.reason else ""
            v.append(_violation(
                BLACKOUT_WINDOWS,
                f"now {now.isoformat()} falls inside blackout "
                f"{w.start_utc.isoformat()} - {w.end_utc.isoformat()}{why}",
            ))
    return v


def playbook_count(plan: RecoveryActionPlan) -> int:
    """One playbook per service touched by the plan."""
    return len({c.service for c in plan.sequence})


def required_approvals(plan: RecoveryActionPlan, approval: ApprovalPolicy) -> int:
    # round() absorbs float noise such as 3 * 0.6 == 1.7999999999999998
    quorum = math.ceil(round(playbook_count(plan) * approval.approval_ratio, 9))
    return max(approval.minimum_approvals, quorum)


def _approvers(approval: ApprovalPolicy, context: ValidationContext) -> List[str]:
    out: List[str] = []
    for who in list(approval.active_approvals) + list(context.active_approvals):
        if who and who not in out:
            out.append(who)
    return out


def check_approvals(plan: RecoveryActionPlan, policy: PolicyConstraint, context: ValidationContext) -> List[Violation]:
    if policy.approval is None:
        return []
    need = required_approvals(plan, policy.approval)
    have = _approvers(policy.approval, context)
    if len(have) < need:
        return [_violation(
            MISSING_APPROVALS,
            f"{len(have)} of {need} required approvals present "
            f"({playbook_count(plan)} playbook(s), minimum {policy.approval.minimum_approvals})",
        )]
    return []


def rto_budget_minutes(plan: RecoveryActionPlan, policy: PolicyConstraint) -> float:
    if plan.target_rto_minutes is not None:
        return plan.target_rto_minutes
    if policy.target_rto_minutes is not None:
        return policy.target_rto_minutes
    return plan.window.budget_minutes


def check_rto(plan: RecoveryActionPlan, policy: PolicyConstraint, context: ValidationContext) -> List[Violation]:
    budget = rto_budget_minutes(plan, policy)
    completion = context.simulated_completion_minutes
    if completion is None:
        completion = plan.estimated_completion_minutes
    headroom = budget - completion
    if headroom < policy.sla_buffer_minutes:
        return [_violation(
            INVALID_RTO,
            f"RTO budget {budget:g} min leaves {headroom:g} min after "
            f"{completion:g} min of work; buffer requires {policy.sla_buffer_minutes:g} min",
        )]
    return []


def check_cycle(plan: RecoveryActionPlan, layering: GraphLayering) -> List[Violation]:
    if plan.has_cycle or layering.has_cycle:
        stuck = [a for l in layering.layers if l.synthetic for a in l.action_ids]
        return [_violation(
            DEPENDENCY_CYCLE,
            f"dependency cycle; ordering unreliable for: {', '.join(stuck) or 'unknown actions'}",
        )]
    return []


def dedupe(violations: Iterable[Violation]) -> List[Violation]:
    seen = set()
    out: List[Violation] = []
    for v in violations:
        key = (v.constraint, v.detail)
        if key not in seen:
            seen.add(key)
            out.append(v)
    return out


def overlapping_windows(windows: Sequence[RecoveryWindow]) -> List[Violation]:
    """Pairwise intersection check, reported as de-duplicated warnings."""
    found: List[Violation] = []
    for i, a in enumerate(windows):
        for b in windows[i + 1:]:
            if a.window_id == b.window_id or not a.overlaps(b):
                continue
            first, second = sorted([a, b], key=lambda w: w.window_id)
            found.append(_violation(
                OVERLAPPING_WINDOWS,
                f"window {first.window_id} ({first.region}/{first.owner_team}) overlaps "
                f"{second.window_id} ({second.region}/{second.owner_team})",
                severity="warning",
            ))
    return dedupe(found)


def resolve_context(plan: RecoveryActionPlan, context: Optional[ValidationContext] = None) -> ValidationContext:
    """Fill the validation clock from the window opening; the wall clock is never read."""
    if context is None:
        return ValidationContext(now_utc=plan.window.start_utc)
    if context.now_utc is None:
        return context.model_copy(update={"now_utc": plan.window.start_utc})
    return context


def _result(plan: RecoveryActionPlan, violations: List[Violation]) -> ValidationResult:
    allowed = not any(v.severity == "error" for v in violations)
    result = ValidationResult(
        allowed=allowed,
        violations=violations,
        window_state="approved" if allowed else "draft",
    )
    log.info(
        "plan %s evaluated: allowed=%s errors=%d warnings=%d",
        plan.plan_id, result.allowed, len(result.errors), len(result.warnings),
    )
    return result


def evaluate(
    plan: RecoveryActionPlan,
    policy: PolicyConstraint,
    context: Optional[ValidationContext] = None,
) -> ValidationResult:
    """
    Run every policy check against a draft plan and collect all violations.

    Checks never short-circuit: an operator sees the full list in one pass.
    ``allowed`` is False as soon as any violation is an error, and the
    window state falls back to 'draft' in that case.
    """
    context = resolve_context(plan, context)
    layering = layer(plan.sequence)

    violations: List[Violation] = []
    violations += check_concurrency(policy, layering)
    violations += check_categories(plan, policy)
    violations += check_sla(plan, policy)
    violations += check_blackout(policy, context.now_utc)
    violations += check_approvals(plan, policy, context)
    violations += check_rto(plan, policy, context)
    violations += check_cycle(plan, layering)
    violations += overlapping_windows([plan.window] + list(context.concurrent_windows))
    return _result(plan, violations)


def check_simulated_rto(
    plan: RecoveryActionPlan,
    policy: PolicyConstraint,
    context: ValidationContext,
    elapsed_minutes: float,
) -> List[Violation]:
    """RTO headroom against the simulated timeline instead of the plan estimate."""
    return check_rto(plan, policy, context.model_copy(update={"simulated_completion_minutes": elapsed_minutes}))


def with_violations(plan: RecoveryActionPlan, result: ValidationResult, extra: Sequence[Violation]) -> ValidationResult:
    """Fold violations found after validation (e.g. by simulation) into an earlier verdict."""
    if not extra:
        return result
    return _result(plan, dedupe(list(result.violations) + list(extra)))
