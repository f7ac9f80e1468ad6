# tests/test_analysis/test_planner.py
"""Tests for storage planning, population shape and live-reference counting."""
import pytest

from simgen_core.analysis import (
    AmbiguousReferenceError,
    PlanFrozenError,
    PlanTable,
    TypeConversionError,
    UnfulfilledBindingError,
    is_member,
)
from simgen_core.analysis.exceptions import FlagOverflowError
from simgen_core.analysis.planner import BackendData, ScopePlan, flag_type
from simgen_core.eqset import Attribute


def lethal_reference_model():
    """A contains B and may die; the connection C holds a pointer to B."""
    return {
        "name": "Model",
        "parts": [
            {
                "name": "A",
                "variables": {"$p": "0.5"},
                "parts": [{"name": "B", "variables": {"y": ["1 @ $init"], "y'": "-y"}}],
            },
            {
                "name": "C",
                "connect": {"b": "A.B"},
                "variables": {"w": "b.y"},
            },
        ],
    }


# --- Singleton collapse ---

@pytest.mark.parametrize("variables, singleton", [
    ({"y": "1"}, True),
    ({"$n": 1, "y": "1"}, True),
    ({"$n": 5, "y": "1"}, False),
])
def test_singleton_detection(analyze, variables, singleton):
    root, table = analyze({"name": "Model", "parts": [{"name": "A", "variables": variables}]})
    assert table[root.find_part("A")].singleton is singleton


def test_root_is_singleton(analyze, euler_document):
    root, table = analyze(euler_document)
    assert table[root].singleton


def test_connections_are_never_singletons(analyze, connection_document):
    root, table = analyze(connection_document)
    assert not table["Model.C"].singleton


# --- Storage lists ---

def test_euler_storage_plan(analyze, euler_document):
    root, table = analyze(euler_document)
    a = root.find_part("A")
    x, dx = a.find("x"), a.find("x'")
    local = table[a].local

    assert x in local.members and dx in local.members
    assert x in local.integrated
    assert x in local.init
    assert dx in local.update
    assert a.find("$n") not in local.members
    assert not is_member(a.find("$init"))


def test_accumulated_write_is_buffered(analyze, connection_document):
    root, table = analyze(connection_document)
    a = root.find_part("A")
    current = a.find("I")
    assert current in table[a].local.buffered_external
    assert current in table[a].local.buffered_external_write
    assert table[a].newborn
    assert table[a].track_instances


def test_population_growth_flags(analyze):
    root, table = analyze({"name": "Model", "parts": [{"name": "A", "variables": {"$n": "$n + 1", "y": "1"}}]})
    bed = table[root.find_part("A")]
    assert bed.can_resize
    assert bed.track_instances
    assert not bed.can_grow_or_die
    assert not bed.singleton


def test_lethal_population_can_grow_or_die(analyze):
    root, table = analyze({"name": "Model", "parts": [{"name": "A", "variables": {"$n": 3, "$p": "0.9"}}]})
    bed = table[root.find_part("A")]
    assert bed.can_grow_or_die
    assert not bed.can_resize
    assert bed.need_local_die


# --- Live references ---

def test_reference_counting_for_lethal_endpoint(analyze):
    root, table = analyze(lethal_reference_model())
    a = root.find_part("A")
    b = a.find_part("B")
    c = root.find_part("C")

    assert b.lethal_container
    assert table[b].refcount
    assert b in table[c].local.reference
    assert b.find("$live").has(Attribute.INIT_ONLY)


def test_live_references_stop_at_the_watched_part(analyze):
    root, table = analyze(lethal_reference_model())
    a = root.find_part("A")
    b = a.find_part("B")
    c = root.find_part("C")

    assert table[c].local.reference == (b,)
    assert table[b].local.reference == (a,)
    assert table[a].refcount
    assert a.find("$live").has(Attribute.INIT_ONLY)


def test_reference_counting_is_absent_for_immortal_endpoints(analyze, connection_document):
    root, table = analyze(connection_document)
    assert not table["Model.A"].refcount
    assert table["Model.C"].local.reference == ()


# --- Freezing ---

def test_table_is_frozen_after_analysis(analyze, euler_document):
    root, table = analyze(euler_document)
    bed = table[root.find_part("A")]
    assert table.frozen
    with pytest.raises(PlanFrozenError):
        bed.refcount = True
    with pytest.raises(PlanFrozenError):
        table.add(BackendData("Model.Z"))
    assert isinstance(bed.local.members, tuple)


def test_attributes_are_frozen_after_analysis(analyze, euler_document):
    root, table = analyze(euler_document)
    for v in root.all_variables():
        assert v.attributes.frozen


def test_plan_table_lookup_by_set_or_name(euler_document, analyze):
    root, table = analyze(euler_document)
    a = root.find_part("A")
    assert table[a] is table["Model.A"]
    assert a in table and "Model.Q" not in table
    assert len(table) == 2
    assert isinstance(table, PlanTable)
    assert isinstance(table[a].scope(True), ScopePlan)


# --- Part-type conversions ---

def test_part_cannot_convert_into_connection(analyze):
    document = {
        "name": "Model",
        "parts": [
            {"name": "A", "variables": {"$type": "split(C)"}},
            {"name": "B"},
            {"name": "C", "connect": {"b": "B"}},
        ],
    }
    with pytest.raises(TypeConversionError) as excinfo:
        analyze(document)
    assert excinfo.value.fqn == "Model.A"
    assert excinfo.value.target == "Model.C"


def test_conversion_needs_every_binding_of_the_target(analyze):
    document = {
        "name": "Model",
        "parts": [
            {"name": "X"},
            {"name": "C1", "connect": {"a": "X"}, "variables": {"$type": "split(C2)"}},
            {"name": "C2", "connect": {"b": "X"}},
        ],
    }
    with pytest.raises(UnfulfilledBindingError) as excinfo:
        analyze(document)
    assert excinfo.value.fqn == "Model.C1"
    assert excinfo.value.alias == "b"


# --- Down references ---

def test_reading_into_a_population_is_ambiguous(analyze, euler_document):
    euler_document["variables"] = {"y": "A.x"}
    with pytest.raises(AmbiguousReferenceError) as excinfo:
        analyze(euler_document)
    assert excinfo.value.fqn == "Model"
    assert excinfo.value.population == "Model.A"


def test_reading_into_a_singleton_is_allowed(analyze, euler_document):
    euler_document["parts"][0]["variables"]["$n"] = 1
    euler_document["variables"] = {"y": "A.x"}
    root, table = analyze(euler_document)
    assert table[root.find_part("A")].singleton


# --- Flag words ---

@pytest.mark.parametrize("bits, name", [(0, None), (1, "uint8_t"), (9, "uint16_t"), (33, "uint64_t")])
def test_flag_type_width(bits, name):
    assert flag_type("Model.A", bits) == name


def test_flag_overflow():
    with pytest.raises(FlagOverflowError):
        flag_type("Model.A", 65)
