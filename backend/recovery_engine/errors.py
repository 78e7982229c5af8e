from __future__ import annotations
from typing import Iterable, List


class RecoveryEngineError(Exception):
    """Base class for everything the engine raises on purpose."""


class StructuralError(RecoveryEngineError, ValueError):
    """Input cannot be turned into a plan at all; no partial result exists."""


class EmptyCandidateSetError(StructuralError):
    def __init__(self, msg: str = "synthesis requires at least one action candidate"):
        super().__init__(msg)


class DanglingDependencyError(StructuralError):
    def __init__(self, missing: Iterable[tuple]):
        # (action_id, missing_dependency_id) pairs
        self.missing: List[tuple] = list(missing)
        refs = ", ".join(f"{a} -> {d}" for a, d in self.missing)
        super().__init__(f"dependsOn references unknown actions: {refs}")


class DuplicateActionError(StructuralError):
    def __init__(self, action_ids: Iterable[str]):
        self.action_ids = sorted(set(action_ids))
        super().__init__(f"duplicate action ids in candidate set: {self.action_ids}")
