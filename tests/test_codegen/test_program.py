# tests/test_codegen/test_program.py
"""
End-to-end code synthesis tests. Each model is analyzed and printed, and the
generated C++ is checked for the statements that carry its semantics.
"""
import copy

from simgen_core.config import CompileConfig, parse_compile_config
from simgen_core.constants import Integrator


# --- Euler population ---

def test_euler_instance_init_and_update(generate, body_of, euler_document):
    source = generate(euler_document)
    init = body_of(source, "void Model_A::init ()")
    assert "_x = 1;" in init
    assert "_x_27 = -_x;" in init
    assert init.index("_x = 1;") < init.index("_x_27 = -_x;")

    update = body_of(source, "void Model_A::update ()")
    assert "_x_27 = -_x;" in update


def test_euler_instance_integrates_with_preserve_branch(generate, body_of, euler_document):
    source = generate(euler_document)
    integrate = body_of(source, "void Model_A::integrate ()")
    lines = [line.strip() for line in integrate.splitlines()]
    assert lines[0] == "EventStep<float> * event = getEvent ();"
    assert lines[1] == "float dt = event->dt;"
    assert "if (preserve)" in lines
    assert "_x = preserve->_x + _x_27 * dt;" in lines
    assert "else" in lines
    assert "_x += _x_27 * dt;" in lines


def test_euler_population_resizes_to_n(generate, body_of, euler_document):
    source = generate(euler_document)
    init = body_of(source, "void Model_A_Population::init ()")
    assert "resize (5);" in init
    assert "class Model_A_Population : public Population<float>" in source


def test_root_is_timed_singleton(generate, body_of, euler_document):
    source = generate(euler_document)
    assert "class Model : public PartTime<float>" in source
    init = body_of(source, "void Model::init ()")
    assert "setPeriod (0.0001);" in init
    assert "_A.init ();" in init

    finalize = body_of(source, "bool Model::finalize ()")
    assert "if (__24p <= 0  ||  __24p < 1  &&  pow (__24p, event->dt) < uniform<float> ())" in finalize

    wrapper = body_of(source, "Wrapper::Wrapper ()")
    assert "population = &_Model;" in wrapper
    assert "_Model.instance.container = this;" in wrapper


def test_global_state_integrates_in_population(generate, body_of, euler_document):
    document = copy.deepcopy(euler_document)
    variables = document["parts"][0]["variables"]
    variables["x"] = {"equations": ["1 @ $init"], "global": True}
    variables["x'"] = {"equations": ["-x"], "global": True}

    source = generate(document)
    integrate = body_of(source, "void Model_A_Population::integrate ()")
    assert "_x += _x_27 * dt;" in integrate
    assert "void Model_A::integrate ()" not in source


# --- Main program ---

def test_main_installs_integrator(generate, body_of, euler_document):
    source = generate(euler_document)
    main = body_of(source, "int main (int argc, char * argv[])")
    assert "Simulator<float>::instance.integrator = new Euler<float>;" in main
    assert "Simulator<float>::instance.run (wrapper);" in main
    assert "catch (const char * message)" in main
    assert main.rstrip().endswith("return 0;")


def test_runge_kutta_and_double(generate, body_of, euler_document):
    config = parse_compile_config({"integrator": "RungeKutta", "numeric_type": "double"})
    assert config.integrator is Integrator.RUNGE_KUTTA
    source = generate(euler_document, config)
    main = body_of(source, "int main (int argc, char * argv[])")
    assert "Simulator<double>::instance.integrator = new RungeKutta<double>;" in main
    assert "double dt = event->dt;" in source


def test_include_uses_runtime_directory(generate, euler_document, tmp_path):
    config = CompileConfig(runtime_dir=tmp_path / "runtime")
    source = generate(euler_document, config)
    assert source.startswith(f'#include "{(tmp_path / "runtime" / "runtime.h").as_posix()}"')


def test_declaration_order(generate, euler_document):
    source = generate(euler_document)
    positions = [
        source.index("class Model_A;"),
        source.index("class Model;"),
        source.index("class Wrapper;"),
        source.index("class Model_A : public"),
        source.index("class Model_A_Population : public"),
        source.index("class Model : public"),
        source.index("class Wrapper : public WrapperBase<float>"),
        source.index("int main ("),
    ]
    assert positions == sorted(positions)


def test_generation_is_deterministic(generate, euler_document, connection_document):
    for document in (euler_document, connection_document):
        first = generate(copy.deepcopy(document))
        second = generate(copy.deepcopy(document))
        assert first == second


# --- Connections ---

def test_connection_accumulates_into_endpoint(generate, body_of, connection_document):
    source = generate(connection_document)
    update = body_of(source, "void Model_C::update ()")
    assert "_post->next__I += _pre->_x;" in update


def test_endpoint_commits_and_clears_accumulator(generate, body_of, connection_document):
    source = generate(connection_document)
    finalize = body_of(source, "bool Model_A::finalize ()")
    commit = finalize.index("_I = next__I;")
    clear = finalize.index("next__I = 0;")
    assert commit < clear


def test_connection_population_iterates_endpoints(generate, body_of, connection_document):
    source = generate(connection_document)
    assert "return getIteratorsSimple ();" in body_of(source, "ConnectIterator<float> * Model_C_Population::getIterators ()")
    iterator = body_of(source, "ConnectPopulation<float> * Model_C_Population::getIterator (int i)")
    assert "case 0:" in iterator and "case 1:" in iterator
    assert "result->firstborn = container->_A.firstborn;" in iterator
    assert "Simulator<float>::instance.connect (this);" in body_of(source, "void Model_C_Population::init ()")


def test_connected_endpoint_tracks_newborns(generate, body_of, connection_document):
    source = generate(connection_document)
    assert "void Model_A_Population::clearNew ()" in source
    add = body_of(source, "void Model_A_Population::add (Part<float> * part)")
    assert "instances.push_back (p);" in add
    assert "firstborn = min (firstborn, p->__24index);" in add


# --- Live references ---

def test_reference_count_on_lethal_endpoint(generate, body_of):
    document = {
        "name": "Model",
        "parts": [
            {
                "name": "A",
                "variables": {"$p": "0.5"},
                "parts": [{"name": "B", "variables": {"y": ["1 @ $init"], "y'": "-y"}}],
            },
            {"name": "C", "connect": {"b": "A.B"}, "variables": {"w": "b.y"}},
        ],
    }
    source = generate(document)
    enter = body_of(source, "void Model_C::enterSimulation ()")
    assert "_b->refcount++;" in enter
    assert "bool Model_A_B::isFree ()" in source


def test_lethal_endpoint_kills_connection(generate, body_of):
    document = {
        "name": "Model",
        "parts": [
            {"name": "A", "variables": {"$n": 5, "$p": "0.5", "x": ["1 @ $init"], "x'": "-x"}},
            {"name": "C", "connect": {"a": "A"}, "variables": {"w": "a.x"}},
        ],
    }
    source = generate(document)
    finalize = [line.strip() for line in body_of(source, "bool Model_C::finalize ()").splitlines()]
    start = finalize.index("if (_a->getLive () == 0)")
    assert finalize[start + 1:start + 5] == ["{", "die ();", "return false;", "}"]
    assert "container->_A.n--;" in body_of(source, "void Model_A::die ()")


# --- Connection iterators ---

def test_nearest_neighbor_iterator(generate, body_of, connection_document):
    connection_document["parts"][1]["variables"].update({"pre.$k": "2", "pre.$radius": "0.1"})
    source = generate(connection_document)
    assert "return getIteratorsNN ();" in body_of(source, "ConnectIterator<float> * Model_C_Population::getIterators ()")
    iterator = [line.strip() for line in
                body_of(source, "ConnectPopulation<float> * Model_C_Population::getIterator (int i)").splitlines()]
    start = iterator.index("result = new ConnectPopulationNN<float> (i);")
    assert iterator[start + 1:start + 4] == ["result->k = 2;", "result->radius = 0.1;", "result->rank -= 2;"]
    assert "result = new ConnectPopulation<float> (i);" in iterator


def test_connection_matrix_iterator(generate, body_of, connection_document):
    connection_document["parts"][1]["matrix"] = {"file": "weights.mtx", "rows": "pre", "cols": "post"}
    source = generate(connection_document)
    assert 'MatrixInput<float> * Matrix0 = matrixHelper<float> ("weights.mtx");' in source
    iterators = [line.strip() for line in
                 body_of(source, "ConnectIterator<float> * Model_C_Population::getIterators ()").splitlines()]
    assert iterators == [
        "ConnectPopulation<float> * rows = getIterator (0);",
        "ConnectPopulation<float> * cols = getIterator (1);",
        "IteratorNonzero<float> * it = Matrix0->getIterator ();",
        "Part<float> * dummy = create ();",
        "return new ConnectMatrix<float> (rows, cols, it, dummy);",
    ]
    index = [line.strip() for line in body_of(source, "int Model_C::mapIndex (int i, int rc)").splitlines()]
    assert index == ["if (i == 0) return rc;", "return rc;"]


# --- Type changes ---

def test_type_change_converts_into_sibling(generate, body_of):
    document = {
        "name": "Model",
        "parts": [
            {
                "name": "A",
                "variables": {"$n": 5, "x": ["1 @ $init"], "x'": "-x", "$type": ["split(B) @ x < 0.5"]},
            },
            {"name": "B", "variables": {"x": ["1 @ $init"], "x'": "x"}},
        ],
    }
    source = generate(document)
    finalize = [line.strip() for line in body_of(source, "bool Model_A::finalize ()").splitlines()]
    start = finalize.index("switch (__24type)")
    assert finalize[start + 2:start + 8] == [
        "case 1:", "{", "container->Model_A_2_Model_B (this, 1);", "die ();", "return false;", "}",
    ]

    update = [line.strip() for line in body_of(source, "void Model_A::update ()").splitlines()]
    assert "__24type = 1;" in update and "__24type = 0;" in update

    conversion = [line.strip() for line in
                  body_of(source, "void Model::Model_A_2_Model_B (Model_A * from, int __24type)").splitlines()]
    assert conversion[:4] == [
        "Model_B * to = _B.allocate ();", "to->enterSimulation ();", "getEvent ()->enqueue (to);", "to->init ();",
    ]
    assert "to->_x = from->_x;" in conversion
