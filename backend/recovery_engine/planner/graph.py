# backend/recovery_engine/planner/graph.py
from __future__ import annotations
import logging
from collections import Counter
from typing import Dict, Iterable, List, Sequence, Set

from ..errors import DanglingDependencyError, DuplicateActionError
from ..models import ActionCandidate, ActionId, GraphLayering, Layer

log = logging.getLogger(__name__)


def check_structure(candidates: Sequence[ActionCandidate]) -> None:
    """Raise on duplicate ids or dependsOn edges that leave the candidate set."""
    counts = Counter(c.action_id for c in candidates)
    dupes = [a for a, n in counts.items() if n > 1]
    if dupes:
        raise DuplicateActionError(dupes)

    missing = [
        (c.action_id, dep)
        for c in candidates
        for dep in c.depends_on
        if dep not in counts
    ]
    if missing:
        raise DanglingDependencyError(missing)


def dependents_of(candidates: Iterable[ActionCandidate]) -> Dict[ActionId, List[ActionId]]:
    """Reverse edges: action id -> ids that depend on it."""
    out: Dict[ActionId, List[ActionId]] = {}
    for c in candidates:
        out.setdefault(c.action_id, [])
        for dep in c.depends_on:
            out.setdefault(dep, []).append(c.action_id)
    return out


def transitive_dependents(candidates: Sequence[ActionCandidate], roots: Iterable[str]) -> Set[ActionId]:
    """Every id reachable from ``roots`` along reverse edges, roots excluded."""
    rev = dependents_of(candidates)
    seen: Set[ActionId] = set()
    stack = list(roots)
    while stack:
        for child in rev.get(stack.pop(), []):
            if child not in seen:
                seen.add(child)
                stack.append(child)
    return seen - set(roots)


def _duration(members: Sequence[ActionCandidate]) -> float:
    return max((c.estimated_minutes for c in members), default=0.0)


def layer(candidates: Sequence[ActionCandidate]) -> GraphLayering:
    """
    Peel the candidate graph into execution layers (Kahn-style).

    A candidate joins layer k once every id in its dependsOn is resolved by
    layers < k. When a pass resolves nothing, whatever is left goes into one
    synthetic trailing layer and ``has_cycle`` is set; that layering keeps
    every id exactly once but its order is not trustworthy.

    Critical path: sum of each layer's slowest member when acyclic, otherwise
    the sum of every duration since no parallelism can be assumed.
    """
    cands = list(candidates)
    check_structure(cands)

    resolved: Set[ActionId] = set()
    remaining = cands
    groups: List[List[ActionCandidate]] = []

    while remaining:
        ready = [c for c in remaining if all(d in resolved for d in c.depends_on)]
        if not ready:
            break
        groups.append(ready)
        resolved.update(c.action_id for c in ready)
        remaining = [c for c in remaining if c.action_id not in resolved]

    has_cycle = bool(remaining)
    layers = [
        Layer(index=i, action_ids=[c.action_id for c in g], duration_minutes=_duration(g))
        for i, g in enumerate(groups)
    ]
    if has_cycle:
        log.warning("dependency cycle among %s", [c.action_id for c in remaining])
        layers.append(Layer(
            index=len(layers),
            action_ids=[c.action_id for c in remaining],
            duration_minutes=_duration(remaining),
            synthetic=True,
        ))

    rev = dependents_of(cands)
    isolated = sum(1 for c in cands if not c.depends_on and not rev.get(c.action_id))

    if has_cycle:
        critical = sum(c.estimated_minutes for c in cands)
    else:
        critical = sum(l.duration_minutes for l in layers)

    return GraphLayering(
        layers=layers,
        has_cycle=has_cycle,
        isolated_count=isolated,
        critical_path_minutes=float(critical),
    )


def order_by_layers(candidates: Sequence[ActionCandidate], layering: GraphLayering) -> List[ActionCandidate]:
    """Flatten layers in order; shortest remediation first inside a layer, input order on ties."""
    by_id = {c.action_id: c for c in candidates}
    position = {c.action_id: i for i, c in enumerate(candidates)}
    out: List[ActionCandidate] = []
    for l in layering.layers:
        members = [by_id[a] for a in l.action_ids]
        members.sort(key=lambda c: (c.estimated_minutes, position[c.action_id]))
        out.extend(members)
    return out
