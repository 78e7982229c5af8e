# backend/recovery_engine/tests/test_graph.py
import pytest

from recovery_engine.errors import DanglingDependencyError, DuplicateActionError, StructuralError
from recovery_engine.planner.graph import layer, order_by_layers, transitive_dependents


def test_chain_layers_and_critical_path(cand):
    cands = [cand("rollback", 10), cand("scale", 15, category="scale", depends_on=["rollback"])]
    g = layer(cands)
    assert g.as_id_lists() == [["rollback"], ["scale"]]
    assert not g.has_cycle
    assert g.critical_path_minutes == 25


def test_parallel_layer_takes_the_slowest(cand):
    cands = [cand("a", 10), cand("b", 20), cand("c", 5, depends_on=["a", "b"])]
    g = layer(cands)
    assert g.as_id_lists() == [["a", "b"], ["c"]]
    assert g.critical_path_minutes == 25
    assert g.largest_layer_size == 2


def test_every_dependency_sits_in_an_earlier_layer(cand):
    # diamond plus a tail
    cands = [
        cand("d", depends_on=["b", "c"]),
        cand("b", depends_on=["a"]),
        cand("c", depends_on=["a"]),
        cand("a"),
        cand("e", depends_on=["d"]),
    ]
    g = layer(cands)
    for c in cands:
        for dep in c.depends_on:
            assert g.layer_of(dep) < g.layer_of(c.action_id)
    assert sorted(a for ids in g.as_id_lists() for a in ids) == ["a", "b", "c", "d", "e"]


def test_cycle_is_flagged_not_raised(cand):
    cands = [
        cand("A", 5, depends_on=["C"]),
        cand("B", 7, depends_on=["A"]),
        cand("C", 11, depends_on=["B"]),
    ]
    g = layer(cands)
    assert g.has_cycle
    flat = [a for ids in g.as_id_lists() for a in ids]
    assert sorted(flat) == ["A", "B", "C"]
    assert g.layers[-1].synthetic
    # no parallelism can be assumed inside a cycle
    assert g.critical_path_minutes == 23


def test_cycle_keeps_the_acyclic_prefix(cand):
    cands = [cand("free", 3), cand("x", depends_on=["y"]), cand("y", depends_on=["x"])]
    g = layer(cands)
    assert g.as_id_lists() == [["free"], ["x", "y"]]
    assert not g.layers[0].synthetic


def test_dangling_dependency_raises(cand):
    with pytest.raises(DanglingDependencyError) as e:
        layer([cand("scale", depends_on=["ghost"])])
    assert e.value.missing == [("scale", "ghost")]
    assert isinstance(e.value, StructuralError)


def test_duplicate_ids_raise(cand):
    with pytest.raises(DuplicateActionError):
        layer([cand("a"), cand("a", 20)])


def test_isolated_count(cand):
    cands = [cand("solo"), cand("a"), cand("b", depends_on=["a"])]
    assert layer(cands).isolated_count == 1


def test_order_by_layers_shortest_first_with_stable_ties(cand):
    cands = [cand("slow", 15), cand("fast", 5), cand("mid", 10), cand("mid2", 10)]
    g = layer(cands)
    assert [c.action_id for c in order_by_layers(cands, g)] == ["fast", "mid", "mid2", "slow"]


def test_transitive_dependents(cand):
    cands = [cand("a"), cand("b", depends_on=["a"]), cand("c", depends_on=["b"]), cand("d")]
    assert transitive_dependents(cands, ["a"]) == {"b", "c"}
