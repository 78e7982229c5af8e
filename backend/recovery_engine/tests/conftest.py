# backend/recovery_engine/tests/conftest.py
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

BACKEND = Path(__file__).resolve().parents[2]
if str(BACKEND) not in sys.path:
    sys.path.insert(0, str(BACKEND))

from recovery_engine.models import (  # noqa: E402
    ActionCandidate,
    ActionDependency,
    Fingerprint,
    PolicyConstraint,
    RecoveryWindow,
    Signal,
)

T0 = datetime(2025, 3, 4, 10, 0, tzinfo=timezone.utc)
ALL_CATEGORIES = ["rollback", "evacuate", "scale", "patch", "validate"]


def make_signal(entity="payments", severity="high", confidence=0.8, source="prometheus",
                code="http_5xx", signal_id=None, minute=0):
    return Signal(
        signal_id=signal_id or f"sig-{entity}-{code}-{minute}",
        tenant_id="acme",
        entity=entity,
        timestamp_utc=T0 + timedelta(minutes=minute),
        severity=severity,
        confidence=confidence,
        fingerprint=Fingerprint(source=source, code=code),
    )


def make_candidate(action_id, minutes=10, category="rollback", service="payments",
                   depends_on=(), required_signal_id=None):
    return ActionCandidate(
        action_id=action_id,
        service=service,
        category=category,
        estimated_minutes=minutes,
        dependency=ActionDependency(depends_on=list(depends_on), required_signal_id=required_signal_id),
    )


def make_policy(**overrides):
    base = dict(
        tenant_id="acme",
        scenario_id="payments-5xx",
        max_concurrency=2,
        allowed_categories=list(ALL_CATEGORIES),
        sla_minutes=30,
        blackout_windows=[],
    )
    base.update(overrides)
    return PolicyConstraint(**base)


def make_window(minutes=60, offset=5, window_id="win-1", region="eu-west-1", owner_team="payments-sre"):
    start = T0 + timedelta(minutes=offset)
    return RecoveryWindow(
        window_id=window_id,
        start_utc=start,
        end_utc=start + timedelta(minutes=minutes),
        region=region,
        owner_team=owner_team,
    )


@pytest.fixture
def sig():
    return make_signal


@pytest.fixture
def cand():
    return make_candidate


@pytest.fixture
def policy():
    return make_policy


@pytest.fixture
def window():
    return make_window


@pytest.fixture
def payments_case():
    """The single-signal rollback-then-scale scenario."""
    signals = [make_signal(severity="critical", confidence=0.9, signal_id="sig-1")]
    candidates = [
        make_candidate("rollback", minutes=10, category="rollback"),
        make_candidate("scale", minutes=15, category="scale", depends_on=["rollback"]),
    ]
    pol = make_policy(max_concurrency=2, allowed_categories=["rollback", "scale"], sla_minutes=30)
    return signals, candidates, pol, make_window()


@pytest.fixture
def scenario_path():
    return Path(__file__).resolve().parents[3] / "scenarios" / "payments_rollback.json"
