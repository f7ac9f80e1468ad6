# tests/test_analysis/test_structure.py
"""
Tests for constants, init-only values, lethality, evaluation order and cycle
handling, plus the guarantee that attributes only accumulate from pass to pass.
"""
import pytest

from simgen_core.analysis import (
    BackendPlanner,
    CyclicDependencyError,
    EventAnalyzer,
    LifetimeAnalyzer,
    ReferenceResolver,
    StructureAnalyzer,
    is_buffered,
)
from simgen_core.analysis.structure import constant_value
from simgen_core.eqset import Attribute
from simgen_core.errors import CompileAbortError
from simgen_core.job import CompileJob
from simgen_core.config import CompileConfig


def structure(build_model, document):
    root = build_model(document)
    ReferenceResolver().resolve(root)
    StructureAnalyzer().analyze(root)
    return root


def part(variables, name="A"):
    return {"name": "Model", "parts": [{"name": name, "variables": variables}]}


# --- Constants and init-only values ---

def test_constants_fold_transitively(build_model):
    root = structure(build_model, part({"a": "2", "b": "a * 3", "c": "b + a"}))
    a = root.find_part("A")
    for name, value in (("a", 2.0), ("b", 6.0), ("c", 8.0)):
        assert a.find(name).has(Attribute.CONSTANT)
        assert constant_value(a.find(name)) == value


def test_conditional_values_are_not_constant(build_model):
    root = structure(build_model, part({"a": ["1 @ $init"], "b": ["2 @ a > 0", "3"]}))
    a = root.find_part("A")
    assert not a.find("a").has(Attribute.CONSTANT)
    assert not a.find("b").has(Attribute.CONSTANT)


def test_init_only_detection(build_model):
    root = structure(build_model, part({"a": ["1 @ $init"], "b": "a + $index", "r": "uniform()"}))
    a = root.find_part("A")
    assert a.find("a").has(Attribute.INIT_ONLY)
    assert a.find("b").has(Attribute.INIT_ONLY)
    assert not a.find("r").has(Attribute.INIT_ONLY)


def test_integrated_state_is_never_init_only(build_model, euler_document):
    root = structure(build_model, euler_document)
    x = root.find_part("A").find("x")
    assert not x.has(Attribute.INIT_ONLY)
    assert not x.has(Attribute.CONSTANT)


def test_global_spreads_along_derivative_chain(build_model):
    document = part({"x": {"equations": ["1 @ $init"], "global": True}, "x'": "-x"})
    root = structure(build_model, document)
    assert root.find_part("A").find("x'").has(Attribute.GLOBAL)


# --- Lethality ---

def test_probabilistic_death(build_model):
    root = structure(build_model, part({"$p": "0.5"}))
    assert root.find_part("A").lethal_p


def test_certain_survival_is_not_lethal(build_model):
    root = structure(build_model, part({"$p": "1"}))
    assert not root.find_part("A").lethal_p


# --- Ordering and cycles ---

def test_temporaries_precede_their_readers(build_model):
    document = part({"y": "t1 * 2", "t1": {"equations": ["z + 1"], "temporary": True}, "z": "y"})
    root = structure(build_model, document)
    a = root.find_part("A")
    order = [v.full_name for v in a.ordered]
    assert order.index("t1") < order.index("y")


def test_member_cycle_is_broken_by_buffering(build_model):
    root = structure(build_model, part({"a": "b", "b": "a"}))
    a = root.find_part("A")
    assert a.find("a").has(Attribute.CYCLE)
    assert not a.find("b").has(Attribute.CYCLE)
    assert is_buffered(a.find("a"))


def test_temporary_cycle_is_fatal(build_model):
    document = part({
        "a": {"equations": ["b + 1"], "temporary": True},
        "b": {"equations": ["a + 1"], "temporary": True},
    })
    with pytest.raises(CyclicDependencyError) as excinfo:
        structure(build_model, document)
    assert excinfo.value.fqn == "Model.A"
    assert set(excinfo.value.cycle) == {"a", "b"}


def test_temporary_cycle_aborts_job_without_output(build_model, tmp_path):
    document = part({
        "a": {"equations": ["b + 1"], "temporary": True},
        "b": {"equations": ["a + 1"], "temporary": True},
    })
    job_dir = tmp_path / "job"
    with pytest.raises(CompileAbortError) as excinfo:
        CompileJob(CompileConfig(), job_dir).run(build_model(document))
    assert "dependency cycle" in str(excinfo.value)
    assert not (job_dir / "model.cc").exists()
    assert not (job_dir / "model.cc.tmp").exists()


# --- Monotonicity ---

def test_attributes_only_accumulate_across_passes(build_model, connection_document):
    root = build_model(connection_document)
    passes = [
        lambda: ReferenceResolver().resolve(root),
        lambda: StructureAnalyzer().analyze(root),
        lambda: EventAnalyzer().analyze(root),
    ]
    table = None
    previous = {}
    for run in passes + [None, None]:
        if run is not None:
            run()
        elif table is None:
            table = BackendPlanner().plan(root)
        else:
            LifetimeAnalyzer(table).analyze(root)
        for v in root.all_variables():
            current = v.attributes.snapshot()
            before = previous.get(v)
            if before is not None:
                assert current & before == before, f"{v.fqn} lost attributes"
            previous[v] = current
    assert table.frozen
