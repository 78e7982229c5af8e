from __future__ import annotations
import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError

from .config import LOG_LEVEL
from .errors import StructuralError
from .logging_setup import configure
from .models import (
    ActionCandidate,
    PolicyConstraint,
    RecoveryWindow,
    Signal,
    StepFault,
    ValidationContext,
)
from .pipeline import run_all
from .reporter import render_report, to_markdown

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_BLOCKED = 1
EXIT_INVALID = 2


class Scenario(BaseModel):
    """On-disk scenario file: everything one pipeline pass needs."""
    signals: List[Signal] = Field(default_factory=list)
    candidates: List[ActionCandidate]
    policy: PolicyConstraint
    window: RecoveryWindow
    context: Optional[ValidationContext] = None
    faults: List[StepFault] = Field(default_factory=list)


def parse_fault(raw: str) -> StepFault:
    """'action:kind' or 'action:fail:N' where N is the number of failed attempts."""
    parts = raw.split(":")
    if len(parts) not in (2, 3):
        raise argparse.ArgumentTypeError(f"bad fault '{raw}', expected ACTION:KIND[:ATTEMPTS]")
    try:
        attempts = int(parts[2]) if len(parts) == 3 else 1
        return StepFault(action_id=parts[0], kind=parts[1], failed_attempts=attempts)
    except (ValueError, ValidationError) as e:
        raise argparse.ArgumentTypeError(f"bad fault '{raw}': {e}")


def parse_now(raw: str) -> datetime:
    s = raw.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"bad timestamp '{raw}'")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="recovery-plan",
        description="Synthesize, validate and simulate a recovery plan from a JSON scenario.",
    )
    ap.add_argument("scenario", type=Path, help="scenario JSON file (signals, candidates, policy, window)")
    ap.add_argument("--format", choices=["md", "json", "html"], default="md")
    ap.add_argument("--now", type=parse_now, help="validation clock (ISO-8601); defaults to window start")
    ap.add_argument("--approver", action="append", default=[], help="active approver id (repeatable)")
    ap.add_argument("--fault", action="append", type=parse_fault, default=[],
                    help="inject ACTION:incident|fail|stall[:ATTEMPTS] (repeatable)")
    ap.add_argument("--plan-id", help="fixed plan id for reproducible output")
    ap.add_argument("--log-level", default=LOG_LEVEL)
    return ap


def _context(sc: Scenario, args: argparse.Namespace) -> ValidationContext:
    base = sc.context or ValidationContext(now_utc=sc.window.start_utc)
    updates = {}
    if args.now is not None:
        updates["now_utc"] = args.now
    if args.approver:
        updates["active_approvals"] = list(base.active_approvals) + list(args.approver)
    if not updates:
        return base
    return ValidationContext.model_validate({**base.model_dump(), **updates})


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure(args.log_level)

    try:
        sc = Scenario.model_validate_json(args.scenario.read_text(encoding="utf-8"))
    except OSError as e:
        print(f"cannot read scenario: {e}", file=sys.stderr)
        return EXIT_INVALID
    except ValidationError as e:
        print(f"invalid scenario:\n{e}", file=sys.stderr)
        return EXIT_INVALID

    try:
        result = run_all(
            sc.signals, sc.candidates, sc.policy, sc.window,
            context=_context(sc, args),
            faults=list(sc.faults) + list(args.fault),
            plan_id=args.plan_id,
        )
    except StructuralError as e:
        print(f"cannot synthesize plan: {e}", file=sys.stderr)
        return EXIT_INVALID

    if args.format == "json":
        print(json.dumps(result.model_dump(mode="json"), indent=2, ensure_ascii=False))
    elif args.format == "html":
        print(render_report(result))
    else:
        print(to_markdown(result))

    return EXIT_OK if result.validation.allowed else EXIT_BLOCKED


if __name__ == "__main__":
    sys.exit(main())
