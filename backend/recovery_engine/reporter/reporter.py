# backend/recovery_engine/reporter/reporter.py
from __future__ import annotations
from typing import Any, Iterable, List, Optional, Sequence

from ..models import PipelineResult, RecoveryActionPlan, SignalSummary, SimulationResult, ValidationResult, Violation


def _fmt_float(x: Any, nd: int = 3) -> str:
    try:
        return f"{float(x):.{nd}f}"
    except (TypeError, ValueError):
        return "-"


def _cell(x: Any) -> str:
    # pipes would split a Markdown table cell
    return str(x).replace("|", "\\|").replace("\n", " ")


def table(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> List[str]:
    lines = [
        "| " + " | ".join(headers) + " |",
        "|" + "|".join("---" for _ in headers) + "|",
    ]
    for r in rows:
        lines.append("| " + " | ".join(_cell(c) for c in r) + " |")
    return lines


def render_violations(violations: Sequence[Violation]) -> List[str]:
    """Violations always render as a full table; warnings are never dropped."""
    if not violations:
        return ["- No policy violations."]
    return table(
        ["Constraint", "Detail", "Severity"],
        ((v.constraint, v.detail, v.severity) for v in violations),
    )


def _render_signals(summary: SignalSummary) -> List[str]:
    lines: List[str] = ["## Signals", ""]
    lines.append(f"- Count: **{summary.count}** across {summary.unique_entities} entit(ies)")
    lines.append(f"- Peak severity: `{summary.peak_severity or '-'}`")
    lines.append(f"- Average confidence: {_fmt_float(summary.average_confidence)}")
    if summary.density.by_entity:
        lines.append("")
        lines += table(["Entity", "Signals"], summary.density.by_entity.items())
    return lines


def _render_plan(plan: RecoveryActionPlan) -> List[str]:
    lines: List[str] = ["## Plan", ""]
    lines.append(f"- Plan: `{plan.plan_id}` (scenario `{plan.scenario_id}`)")
    lines.append(f"- Window: {plan.window.start_utc.isoformat()} - {plan.window.end_utc.isoformat()} "
                 f"@ {plan.window.region} / {plan.window.owner_team}")
    lines.append(f"- Estimated completion: **{plan.estimated_completion_minutes:g} min** (critical path)")
    lines.append(f"- Confidence: {_fmt_float(plan.aggregate_confidence)}")
    if plan.has_cycle:
        lines.append("- **Dependency cycle detected: ordering is not reliable**")
    lines.append(f"- Rationale: {plan.rationale}")
    lines.append("")

    layer_of = {a: i for i, ids in enumerate(plan.layers) for a in ids}
    lines += table(
        ["#", "Layer", "Action", "Service", "Category", "Minutes", "Depends on"],
        (
            (i + 1, layer_of.get(c.action_id, "-"), c.action_id, c.service, c.category,
             f"{c.estimated_minutes:g}", ", ".join(c.depends_on) or "-")
            for i, c in enumerate(plan.sequence)
        ),
    )
    return lines


def _render_validation(validation: ValidationResult) -> List[str]:
    status = "ALLOWED" if validation.allowed else "BLOCKED"
    lines: List[str] = ["## Policy", ""]
    lines.append(f"- Verdict: **{status}** (window state `{validation.window_state}`)")
    lines.append("")
    lines += render_violations(validation.violations)
    return lines


def _render_simulation(sim: SimulationResult) -> List[str]:
    lines: List[str] = ["## Simulation", ""]
    lines.append(f"- Run state: **{sim.run_state}** / window `{sim.window_state}`")
    lines.append(f"- Residual risk: **{_fmt_float(sim.final_risk_score)}** (lower is safer)")
    lines.append(f"- Elapsed: {sim.elapsed_minutes:g} min, incidents: {sim.incidents_detected}")
    lines.append("")
    lines += table(
        ["Action", "Layer", "State", "Attempts", "Started", "Completed"],
        (
            (s.action_id, s.layer, s.state, s.attempts,
             s.started_at_utc.isoformat() if s.started_at_utc else "-",
             s.completed_at_utc.isoformat() if s.completed_at_utc else "-")
            for s in sim.steps
        ),
    )
    if sim.notes:
        lines.append("")
        lines.append("Notes:")
        for n in sim.notes:
            lines.append(f"- {n}")
    return lines


def to_markdown(result: PipelineResult, title: Optional[str] = None) -> str:
    """Render a complete, human-readable recovery plan report in Markdown."""
    plan = result.plan
    lines: List[str] = [f"# {title or 'Recovery Plan Report'} — {plan.scenario_id}", ""]
    lines += _render_signals(result.summary)
    lines.append("")
    lines += _render_plan(plan)
    lines.append("")
    lines += _render_validation(result.validation)
    lines.append("")
    lines += _render_simulation(result.simulation)
    lines.append("")
    lines.append("---")
    lines.append(f"_{result.policy_summary}_")
    return "\n".join(lines)
