from __future__ import annotations
import uuid
from datetime import datetime, timezone
from typing import Annotated, Dict, List, Literal, NewType, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator

from . import config

# Opaque ids; plain strings at runtime, distinct names for the type checker.
SignalId = NewType("SignalId", str)
TenantId = NewType("TenantId", str)
ActionId = NewType("ActionId", str)
PlanId = NewType("PlanId", str)
ScenarioId = NewType("ScenarioId", str)
WindowId = NewType("WindowId", str)

Severity = Literal["low", "medium", "high", "critical"]
ActionCategory = Literal["rollback", "evacuate", "scale", "patch", "validate"]
WindowState = Literal["draft", "simulating", "approved", "executing", "completed", "canceled"]
StepState = Literal["queued", "executing", "completed", "failed", "stalled"]
ViolationSeverity = Literal["warning", "error"]
FaultKind = Literal["incident", "fail", "stall"]

SEVERITY_WEIGHT: Dict[str, int] = {"critical": 5, "high": 3, "medium": 2, "low": 1}


def _as_utc(dt: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clamp01(x: float) -> float:
    return max(0.0, min(1.0, float(x)))


def new_id() -> str:
    return str(uuid.uuid4())


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# --------------------------------- Signals -----------------------------------
class Fingerprint(_Frozen):
    source: str
    code: str
    attributes: Dict[str, str] = Field(default_factory=dict)


class Signal(_Frozen):
    signal_id: SignalId = Field(default_factory=new_id)
    tenant_id: TenantId = "default"
    entity: str
    timestamp_utc: UtcDatetime = Field(default_factory=utcnow)
    severity: Severity
    confidence: float = Field(ge=0.0, le=1.0)
    fingerprint: Fingerprint


class SignalDensity(_Frozen):
    by_entity: Dict[str, int] = Field(default_factory=dict)
    by_source: Dict[str, int] = Field(default_factory=dict)
    by_severity: Dict[str, int] = Field(default_factory=dict)


class SignalSummary(_Frozen):
    count: int
    unique_entities: int
    average_confidence: float = Field(ge=0.0, le=1.0)
    peak_severity: Optional[Severity] = None
    density: SignalDensity = Field(default_factory=SignalDensity)


class SignalCluster(_Frozen):
    entity: str
    code: str
    dominant_severity: Severity
    members: List[Signal]

    @property
    def size(self) -> int:
        return len(self.members)


# --------------------------------- Actions -----------------------------------
class ActionDependency(_Frozen):
    depends_on: List[ActionId] = Field(default_factory=list)
    required_signal_id: Optional[SignalId] = None


class ActionCandidate(_Frozen):
    action_id: ActionId
    service: str
    category: ActionCategory
    estimated_minutes: float = Field(ge=0)
    rollback_minutes: float = Field(default=0, ge=0)
    side_effects: List[str] = Field(default_factory=list)
    labels: Dict[str, str] = Field(default_factory=dict)
    dependency: ActionDependency = Field(default_factory=ActionDependency)

    @property
    def depends_on(self) -> List[ActionId]:
        return self.dependency.depends_on

    @property
    def expected_duration_ms(self) -> int:
        return int(round(self.estimated_minutes * 60_000))


# --------------------------------- Policy ------------------------------------
class BlackoutWindow(_Frozen):
    start_utc: UtcDatetime
    end_utc: UtcDatetime
    reason: Optional[str] = None

    @model_validator(mode="after")
    def _ordered(self) -> "BlackoutWindow":
        if self.end_utc < self.start_utc:
            raise ValueError("blackout window ends before it starts")
        return self

    def contains(self, now: datetime) -> bool:
        return self.start_utc <= _as_utc(now) <= self.end_utc


class ApprovalPolicy(_Frozen):
    minimum_approvals: int = Field(default=0, ge=0)
    approval_ratio: float = Field(default_factory=lambda: config.APPROVAL_RATIO, ge=0.0, le=1.0)
    active_approvals: List[str] = Field(default_factory=list)


class PolicyConstraint(_Frozen):
    tenant_id: TenantId = "default"
    scenario_id: ScenarioId = "default"
    max_concurrency: int = Field(ge=1)
    allowed_categories: List[ActionCategory]
    blackout_windows: List[BlackoutWindow] = Field(default_factory=list)
    sla_minutes: float = Field(ge=0)
    sla_buffer_minutes: float = Field(default=0, ge=0)
    target_rto_minutes: Optional[float] = Field(default=None, ge=0)
    approval: Optional[ApprovalPolicy] = None
    allow_parallelism: bool = True
    max_wall_clock_minutes: Optional[int] = Field(default=None, ge=0)
    max_retries_per_step: int = Field(default=0, ge=0)


class RecoveryWindow(_Frozen):
    window_id: WindowId = Field(default_factory=new_id)
    start_utc: UtcDatetime
    end_utc: UtcDatetime
    region: str
    owner_team: str

    @model_validator(mode="after")
    def _ordered(self) -> "RecoveryWindow":
        if self.end_utc <= self.start_utc:
            raise ValueError("recovery window must end after it starts")
        return self

    @property
    def budget_minutes(self) -> float:
        return (self.end_utc - self.start_utc).total_seconds() / 60.0

    def overlaps(self, other: "RecoveryWindow") -> bool:
        # touching edges are back-to-back, not overlapping
        return self.start_utc < other.end_utc and other.start_utc < self.end_utc


# ---------------------------------- Graph ------------------------------------
class Layer(_Frozen):
    index: int
    action_ids: List[ActionId]
    duration_minutes: float
    synthetic: bool = False


class GraphLayering(_Frozen):
    layers: List[Layer]
    has_cycle: bool
    isolated_count: int
    critical_path_minutes: float

    @property
    def largest_layer_size(self) -> int:
        return max((len(l.action_ids) for l in self.layers), default=0)

    def layer_of(self, action_id: str) -> Optional[int]:
        for l in self.layers:
            if action_id in l.action_ids:
                return l.index
        return None

    def as_id_lists(self) -> List[List[ActionId]]:
        return [list(l.action_ids) for l in self.layers]


# ----------------------------------- Plan ------------------------------------
class RecoveryActionPlan(_Frozen):
    plan_id: PlanId = Field(default_factory=new_id)
    scenario_id: ScenarioId
    tenant_id: TenantId = "default"
    sequence: List[ActionCandidate] = Field(min_length=1)
    layers: List[List[ActionId]] = Field(default_factory=list)
    has_cycle: bool = False
    estimated_completion_minutes: float = Field(ge=0)
    aggregate_confidence: float
    rationale: str
    window: RecoveryWindow
    target_rto_minutes: Optional[float] = Field(default=None, ge=0)
    created_at_utc: UtcDatetime = Field(default_factory=utcnow)

    @field_validator("aggregate_confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v):
        return clamp01(v)

    @model_validator(mode="after")
    def _shape(self) -> "RecoveryActionPlan":
        ids = [c.action_id for c in self.sequence]
        if len(set(ids)) != len(ids):
            raise ValueError("plan sequence contains duplicate action ids")
        if self.layers:
            flat = [a for layer in self.layers for a in layer]
            if sorted(flat) != sorted(ids):
                raise ValueError("plan layers do not cover the sequence exactly once")

        position = {a: i for i, a in enumerate(ids)}
        dangling = [f"{c.action_id} -> {d}" for c in self.sequence for d in c.depends_on if d not in position]
        if dangling:
            raise ValueError(f"dependsOn references actions outside the plan: {', '.join(dangling)}")

        # a cyclic plan has no valid order to enforce
        if not self.has_cycle:
            layer_of = {a: i for i, layer in enumerate(self.layers) for a in layer}
            for c in self.sequence:
                for d in c.depends_on:
                    if position[d] >= position[c.action_id]:
                        raise ValueError(f"{c.action_id} is sequenced before its dependency {d}")
                    if self.layers and layer_of[d] >= layer_of[c.action_id]:
                        raise ValueError(f"{c.action_id} is not in a later layer than its dependency {d}")
        return self

    @property
    def action_ids(self) -> List[ActionId]:
        return [c.action_id for c in self.sequence]


# -------------------------------- Validation ---------------------------------
class Violation(_Frozen):
    constraint: str
    detail: str
    severity: ViolationSeverity


class ValidationContext(_Frozen):
    # None means "as of the window opening"; the engine never reads the wall clock
    now_utc: Optional[UtcDatetime] = None
    active_approvals: List[str] = Field(default_factory=list)
    simulated_completion_minutes: Optional[float] = Field(default=None, ge=0)
    concurrent_windows: List[RecoveryWindow] = Field(default_factory=list)


class ValidationResult(_Frozen):
    allowed: bool
    violations: List[Violation] = Field(default_factory=list)
    window_state: WindowState

    @property
    def errors(self) -> List[Violation]:
        return [v for v in self.violations if v.severity == "error"]

    @property
    def warnings(self) -> List[Violation]:
        return [v for v in self.violations if v.severity == "warning"]


# -------------------------------- Simulation ---------------------------------
class StepFault(_Frozen):
    action_id: ActionId
    kind: FaultKind
    failed_attempts: int = Field(default=1, ge=1)


class StepOutcome(_Frozen):
    action_id: ActionId
    layer: int
    state: StepState
    attempts: int = 0
    started_at_utc: Optional[UtcDatetime] = None
    completed_at_utc: Optional[UtcDatetime] = None
    expected_duration_ms: int = 0


class SimulationResult(_Frozen):
    scenario_id: ScenarioId
    tenant_id: TenantId
    action_plan: RecoveryActionPlan
    final_risk_score: float
    window_state: WindowState
    run_state: StepState
    elapsed_minutes: float = 0.0
    incidents_detected: int = 0
    steps: List[StepOutcome] = Field(default_factory=list)
    # checks re-run against the simulated timeline
    violations: List[Violation] = Field(default_factory=list)
    notes: List[str] = Field(default_factory=list)

    @field_validator("final_risk_score", mode="before")
    @classmethod
    def _clamp_risk(cls, v):
        return clamp01(v)


class PipelineResult(BaseModel):
    summary: SignalSummary
    clusters: List[SignalCluster] = Field(default_factory=list)
    layering: GraphLayering
    plan: RecoveryActionPlan
    validation: ValidationResult
    simulation: SimulationResult
    policy_summary: str = ""
