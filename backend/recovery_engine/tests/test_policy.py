# backend/recovery_engine/tests/test_policy.py
from datetime import timedelta

from recovery_engine.models import ApprovalPolicy, BlackoutWindow, ValidationContext
from recovery_engine.policy.policy_guard import (
    concurrency_limit,
    evaluate,
    required_approvals,
)
from recovery_engine.remediator.synthesizer import synthesize


def _codes(result):
    return [v.constraint for v in result.violations]


def _ctx(window, **kw):
    return ValidationContext(now_utc=kw.pop("now_utc", window.start_utc), **kw)


def test_clean_plan_is_allowed(payments_case):
    signals, cands, pol, win = payments_case
    plan = synthesize(signals, cands, pol, win)
    r = evaluate(plan, pol, _ctx(win))
    assert r.allowed
    assert r.violations == []
    assert r.window_state == "approved"


def test_wide_layer_breaks_max_concurrency(cand, policy, window):
    win = window()
    pol = policy(max_concurrency=2)
    plan = synthesize([], [cand("a"), cand("b"), cand("c")], pol, win)
    r = evaluate(plan, pol, _ctx(win))
    assert not r.allowed
    assert _codes(r) == ["maxConcurrency"]
    assert r.window_state == "draft"


def test_disallowed_category(cand, policy, window):
    win = window()
    pol = policy(allowed_categories=["rollback"])
    plan = synthesize([], [cand("a"), cand("drain", category="evacuate")], pol, win)
    r = evaluate(plan, pol, _ctx(win))
    assert not r.allowed
    assert _codes(r) == ["allowedCategories"]
    assert "evacuate" in r.violations[0].detail


def test_sla_overrun_is_only_a_warning(cand, policy, window):
    win = window()
    pol = policy(sla_minutes=20)
    plan = synthesize([], [cand("a", 10), cand("b", 15, depends_on=["a"])], pol, win)
    r = evaluate(plan, pol, _ctx(win))
    assert r.allowed
    assert [(v.constraint, v.severity) for v in r.violations] == [("slaMinutes", "warning")]
    assert r.warnings and not r.errors


def test_blackout_blocks_the_plan(cand, policy, window):
    win = window()
    blackout = BlackoutWindow(start_utc=win.start_utc - timedelta(minutes=10),
                              end_utc=win.start_utc, reason="payroll freeze")
    pol = policy(blackout_windows=[blackout])
    plan = synthesize([], [cand("a")], pol, win)

    r = evaluate(plan, pol, _ctx(win))  # end edge is inclusive
    assert not r.allowed
    assert _codes(r) == ["blackoutWindows"]
    assert "payroll freeze" in r.violations[0].detail

    later = evaluate(plan, pol, _ctx(win, now_utc=win.start_utc + timedelta(minutes=1)))
    assert later.allowed


def test_approval_quorum(cand, policy, window):
    win = window()
    pol = policy(approval=ApprovalPolicy(minimum_approvals=1, approval_ratio=0.6, active_approvals=["alice"]))
    plan = synthesize([], [cand("a", service="payments"), cand("b", service="ledger")], pol, win)
    # two playbooks * 0.6 rounds up to 2
    assert required_approvals(plan, pol.approval) == 2

    r = evaluate(plan, pol, _ctx(win))
    assert _codes(r) == ["missingApprovals"]

    ok = evaluate(plan, pol, _ctx(win, active_approvals=["bob", "alice"]))
    assert ok.allowed


def test_no_approval_policy_means_no_check(cand, policy, window):
    win = window()
    pol = policy()
    plan = synthesize([], [cand("a", service="payments"), cand("b", service="ledger")], pol, win)
    assert "missingApprovals" not in _codes(evaluate(plan, pol, _ctx(win)))


def test_rto_budget_from_window(cand, policy, window):
    win = window(minutes=20)
    pol = policy()
    plan = synthesize([], [cand("a", 10), cand("b", 15, depends_on=["a"])], pol, win)
    r = evaluate(plan, pol, _ctx(win))
    assert not r.allowed
    assert _codes(r) == ["invalid-rto"]


def test_rto_buffer_and_simulated_completion(cand, policy, window):
    win = window(minutes=60)
    pol = policy(target_rto_minutes=30, sla_buffer_minutes=10)
    plan = synthesize([], [cand("a", 10), cand("b", 15, depends_on=["a"])], pol, win)
    # 30 - 25 leaves 5, buffer wants 10
    assert _codes(evaluate(plan, pol, _ctx(win))) == ["invalid-rto"]
    assert evaluate(plan, pol, _ctx(win, simulated_completion_minutes=20)).allowed


def test_cycle_is_an_error(cand, policy, window):
    win = window()
    pol = policy(sla_minutes=120)
    plan = synthesize([], [cand("a", depends_on=["b"]), cand("b", depends_on=["a"])], pol, win)
    r = evaluate(plan, pol, _ctx(win))
    assert not r.allowed
    assert "dependencyCycle" in _codes(r)


def test_overlapping_windows_are_deduplicated(cand, policy, window):
    win = window()
    other = window(offset=30, window_id="win-2", region="us-east-1", owner_team="ledger-sre")
    pol = policy()
    plan = synthesize([], [cand("a")], pol, win)
    r = evaluate(plan, pol, _ctx(win, concurrent_windows=[other, other, win]))
    assert r.allowed
    overlaps = [v for v in r.violations if v.constraint == "overlappingWindows"]
    assert len(overlaps) == 1
    assert overlaps[0].severity == "warning"
    assert "win-1" in overlaps[0].detail and "win-2" in overlaps[0].detail


def test_back_to_back_windows_do_not_overlap(cand, policy, window):
    win = window(minutes=60)
    after = window(offset=65, window_id="win-2")
    pol = policy()
    plan = synthesize([], [cand("a")], pol, win)
    assert evaluate(plan, pol, _ctx(win, concurrent_windows=[after])).violations == []


def test_all_checks_are_reported_together(cand, policy, window):
    win = window()
    blackout = BlackoutWindow(start_utc=win.start_utc, end_utc=win.end_utc)
    pol = policy(max_concurrency=2, allowed_categories=["rollback"], blackout_windows=[blackout])
    plan = synthesize([], [cand("a"), cand("b"), cand("c", category="evacuate")], pol, win)
    r = evaluate(plan, pol, _ctx(win))
    assert _codes(r) == ["maxConcurrency", "allowedCategories", "blackoutWindows"]


def test_concurrency_limit(policy):
    assert concurrency_limit(policy(max_concurrency=4, allow_parallelism=False)) == 1
    assert concurrency_limit(policy(max_concurrency=6, max_wall_clock_minutes=20)) == 4
    assert concurrency_limit(policy(max_concurrency=10, max_wall_clock_minutes=100)) == 8
    assert concurrency_limit(policy(max_concurrency=3, max_wall_clock_minutes=2)) == 1
    assert concurrency_limit(policy(max_concurrency=3)) == 3


def test_context_without_clock_is_checked_at_window_start(cand, policy, window):
    win = window()
    blackout = BlackoutWindow(start_utc=win.start_utc, end_utc=win.start_utc + timedelta(minutes=1))
    pol = policy(blackout_windows=[blackout])
    plan = synthesize([], [cand("a")], pol, win)
    ctx = ValidationContext(active_approvals=["alice"])
    assert ctx.now_utc is None
    r = evaluate(plan, pol, ctx)
    assert _codes(r) == ["blackoutWindows"]
    assert win.start_utc.isoformat() in r.violations[0].detail
