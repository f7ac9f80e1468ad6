# tests/test_analysis/test_resolver.py
"""Tests for the reference-resolution pass: specials, names, bindings and writes into other parts."""
import pytest

from simgen_core.analysis import ReferenceResolver, UnresolvedReferenceError, UnsupportedFeatureError
from simgen_core.constants import DEFAULT_DT
from simgen_core.eqset import Attribute, StepKind


def resolve(build_model, document, duration=1.0):
    root = build_model(document)
    ReferenceResolver(duration).resolve(root)
    return root


# --- Special variables ---

def test_root_receives_time_specials(build_model, euler_document):
    root = resolve(build_model, euler_document)
    t = root.find("$t")
    dt = root.find("$t'")
    assert t.has(Attribute.GLOBAL) and t.has(Attribute.PREEXISTENT)
    assert dt.equations[0].expression.fold() == DEFAULT_DT
    assert root.find("$p") is not None
    assert root.find("$n") is None


def test_parts_receive_population_specials(build_model, euler_document):
    root = resolve(build_model, euler_document)
    a = root.find_part("A")
    assert a.find("$index").has(Attribute.READ_ONLY)
    assert a.find("$n").has(Attribute.GLOBAL)
    assert a.find("$live") is not None
    assert a.find("$init").has(Attribute.PREEXISTENT)


def test_missing_population_size_defaults_to_one(build_model):
    root = resolve(build_model, {"name": "Model", "parts": [{"name": "A", "variables": {"y": "1"}}]})
    n = root.find_part("A").find("$n")
    assert n.equations[0].expression.fold() == 1.0


def test_time_step_outside_root_is_rejected(build_model):
    document = {"name": "Model", "parts": [{"name": "A", "variables": {"$t'": "0.001"}}]}
    with pytest.raises(UnsupportedFeatureError) as excinfo:
        resolve(build_model, document)
    assert excinfo.value.fqn == "Model.A"
    assert "$t'" in excinfo.value.get_diagnostic_report()


# --- Name resolution ---

def test_derivatives_are_linked(build_model, euler_document):
    root = resolve(build_model, euler_document)
    a = root.find_part("A")
    assert a.find("x").derivative is a.find("x'")


def test_missing_integral_is_created(build_model):
    root = resolve(build_model, {"name": "Model", "parts": [{"name": "A", "variables": {"v''": "-v"}}]})
    a = root.find_part("A")
    assert a.find("v'") is not None
    assert a.find("v").derivative is a.find("v'")


def test_local_read_records_dependency(build_model, euler_document):
    root = resolve(build_model, euler_document)
    a = root.find_part("A")
    x, dx = a.find("x"), a.find("x'")
    access = dx.equations[0].expression.operand
    assert access.reference.variable is x
    assert access.reference.is_local
    assert x in dx.depends
    assert dx in x.uses


def test_reads_climb_to_containers(build_model):
    document = {
        "name": "Model",
        "variables": {"g": "2"},
        "parts": [{"name": "A", "variables": {"y": "g * 3"}}],
    }
    root = resolve(build_model, document)
    access = root.find_part("A").find("y").equations[0].expression.left
    assert access.reference.variable is root.find("g")
    assert [s.kind for s in access.reference.resolution] == [StepKind.ASCEND]
    assert root.find("g").has(Attribute.EXTERNAL_READ)


def test_unknown_name_is_fatal(build_model):
    document = {"name": "Model", "parts": [{"name": "A", "variables": {"y": "nowhere + 1"}}]}
    with pytest.raises(UnresolvedReferenceError) as excinfo:
        resolve(build_model, document)
    error = excinfo.value
    assert (error.fqn, error.variable, error.name) == ("Model.A", "y", "nowhere")


# --- Connections ---

def test_connection_write_targets_endpoint(build_model, connection_document):
    root = resolve(build_model, connection_document)
    a, c = root.find_part("A"), root.find_part("C")
    write = c.find("post.I")
    assert write.has(Attribute.REFERENCE)
    assert write.reference.variable is a.find("I")
    assert [s.kind for s in write.reference.resolution] == [StepKind.TRAVERSE]
    assert a.find("I").has(Attribute.EXTERNAL_WRITE)
    assert a.find("x").has(Attribute.EXTERNAL_READ)
    assert a.connected


def test_binding_resolution_path(build_model, connection_document):
    root = resolve(build_model, connection_document)
    binding = root.find_part("C").find_binding("pre")
    assert [(s.kind, s.target.name) for s in binding.resolution] == [
        (StepKind.ASCEND, "Model"),
        (StepKind.DESCEND, "A"),
    ]
