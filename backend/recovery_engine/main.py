
from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, PlainTextResponse, Response
from prometheus_client import (
    CollectorRegistry, Counter, Gauge, generate_latest, CONTENT_TYPE_LATEST
)
from pydantic import BaseModel, Field, ValidationError

from . import __version__
from .config import ALLOWED_ORIGINS, ENV_NAME, LOG_LEVEL
from .detectors.aggregator import build_clusters
from .errors import StructuralError
from .logging_setup import configure
from .models import (
    ActionCandidate,
    GraphLayering,
    PipelineResult,
    PolicyConstraint,
    RecoveryActionPlan,
    RecoveryWindow,
    Signal,
    SignalCluster,
    SignalSummary,
    SimulationResult,
    StepFault,
    ValidationContext,
    ValidationResult,
)
from .pipeline import aggregate_signals, run_all, simulate_plan, synthesize_plan, validate_plan
from .planner.graph import layer
from .reporter import render_report, to_markdown
from .security import require_scopes

# --------------------------------- App setup ---------------------------------
log = configure(LOG_LEVEL)
app = FastAPI(title="Recovery Plan Engine")

VERSION = {"version": __version__, "build": "local", "env": ENV_NAME}
started_at = time.time()

REGISTRY = CollectorRegistry()
PLANS_TOTAL         = Counter("plans_synthesized_total", "Plans synthesized", registry=REGISTRY)
VALIDATIONS_TOTAL   = Counter("plan_validations_total", "Plan validations", ["allowed"], registry=REGISTRY)
SIMULATIONS_TOTAL   = Counter("plan_simulations_total", "Plan simulations", ["run_state"], registry=REGISTRY)
STRUCTURAL_TOTAL    = Counter("structural_errors_total", "Requests rejected as structurally invalid", registry=REGISTRY)
LAST_RISK_GAUGE     = Gauge("last_residual_risk", "Residual risk of the most recent simulation", registry=REGISTRY)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if "*" in ALLOWED_ORIGINS else ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ------------------------------- Auth deps -----------------------------------
PLAN = Depends(require_scopes(["plan"]))
SIM  = Depends(require_scopes(["simulate"]))
ADM  = Depends(require_scopes(["admin"]))

# -------------------------------- Payloads -----------------------------------
class LayerIn(BaseModel):
    candidates: List[ActionCandidate]

class SynthesizeIn(BaseModel):
    signals: List[Signal] = Field(default_factory=list)
    candidates: List[ActionCandidate]
    policy: PolicyConstraint
    window: RecoveryWindow
    plan_id: Optional[str] = None

class ValidateIn(BaseModel):
    plan: RecoveryActionPlan
    policy: PolicyConstraint
    context: Optional[ValidationContext] = None

class SimulateIn(ValidateIn):
    faults: List[StepFault] = Field(default_factory=list)

class RunIn(SynthesizeIn):
    context: Optional[ValidationContext] = None
    faults: List[StepFault] = Field(default_factory=list)

# ---------------------------------- Helpers ----------------------------------
def _structural(e: Exception) -> HTTPException:
    STRUCTURAL_TOTAL.inc()
    log.warning("rejected structurally invalid input: %s", e)
    return HTTPException(422, str(e))

def _run(payload: RunIn) -> PipelineResult:
    try:
        result = run_all(
            payload.signals, payload.candidates, payload.policy, payload.window,
            context=payload.context, faults=payload.faults, plan_id=payload.plan_id,
        )
    except (StructuralError, ValidationError) as e:
        raise _structural(e)
    PLANS_TOTAL.inc()
    VALIDATIONS_TOTAL.labels(allowed=str(result.validation.allowed).lower()).inc()
    SIMULATIONS_TOTAL.labels(run_state=result.simulation.run_state).inc()
    LAST_RISK_GAUGE.set(result.simulation.final_risk_score)
    return result

# -------------------------------- Basic routes -------------------------------
@app.get("/health")
def health():
    return {"status": "ok", "uptime": int(time.time() - started_at)}

@app.get("/version")
def version():
    return VERSION

@app.get("/metrics", dependencies=[ADM])
def metrics():
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)

# ---------------------------------- Signals ----------------------------------
@app.post("/signals/summary", dependencies=[PLAN], response_model=SignalSummary)
def signals_summary(signals: List[Signal]):
    return aggregate_signals(signals)

@app.post("/signals/clusters", dependencies=[PLAN], response_model=List[SignalCluster])
def signals_clusters(signals: List[Signal]):
    return build_clusters(signals)

# ----------------------------------- Plans -----------------------------------
@app.post("/plans/layers", dependencies=[PLAN], response_model=GraphLayering)
def plan_layers(payload: LayerIn):
    try:
        return layer(payload.candidates)
    except StructuralError as e:
        raise _structural(e)

@app.post("/plans/synthesize", dependencies=[PLAN], response_model=RecoveryActionPlan)
def plan_synthesize(payload: SynthesizeIn):
    try:
        plan = synthesize_plan(
            payload.signals, payload.candidates, payload.policy, payload.window,
            plan_id=payload.plan_id,
        )
    except (StructuralError, ValidationError) as e:
        raise _structural(e)
    PLANS_TOTAL.inc()
    return plan

@app.post("/plans/validate", dependencies=[PLAN], response_model=ValidationResult)
def plan_validate(payload: ValidateIn):
    try:
        result = validate_plan(payload.plan, payload.policy, payload.context)
    except StructuralError as e:
        raise _structural(e)
    VALIDATIONS_TOTAL.labels(allowed=str(result.allowed).lower()).inc()
    return result

@app.post("/plans/simulate", dependencies=[SIM], response_model=SimulationResult)
def plan_simulate(payload: SimulateIn):
    try:
        result = simulate_plan(payload.plan, payload.policy, payload.context, payload.faults)
    except StructuralError as e:
        raise _structural(e)
    SIMULATIONS_TOTAL.labels(run_state=result.run_state).inc()
    LAST_RISK_GAUGE.set(result.final_risk_score)
    return result

@app.post("/plans/run", dependencies=[SIM], response_model=PipelineResult)
def plan_run(payload: RunIn):
    return _run(payload)

# ---------------------------------- Reports ----------------------------------
@app.post("/plans/report.md", dependencies=[SIM], response_class=PlainTextResponse)
def plan_report_md(payload: RunIn):
    return to_markdown(_run(payload))

@app.post("/plans/report.html", dependencies=[SIM], response_class=HTMLResponse)
def plan_report_html(payload: RunIn):
    return render_report(_run(payload))

# --------------------------- System / diagnostics ----------------------------
@app.get("/status")
def status() -> Dict[str, Any]:
    return {
        "uptime_seconds": int(time.time() - started_at),
        "env": {"name": ENV_NAME, "log_level": LOG_LEVEL},
    }
