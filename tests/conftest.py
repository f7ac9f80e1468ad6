# tests/conftest.py
import copy
import re

import pytest

from simgen_core.config import CompileConfig, parse_compile_config
from simgen_core.codegen import ProgramGenerator
from simgen_core.eqset import ModelBuilder
from simgen_core.job import CompileJob
from simgen_core.parser import ModelParser

# --- Reference models ---

# One population of five instances, each integrating x' = -x from x = 1.
EULER_MODEL = {
    "name": "Model",
    "parts": [
        {
            "name": "A",
            "variables": {
                "$n": 5,
                "x": ["1 @ $init"],
                "x'": ["-x"],
            },
        },
    ],
}

# A self-connection that accumulates the presynaptic x into the postsynaptic I.
CONNECTION_MODEL = {
    "name": "Model",
    "parts": [
        {
            "name": "A",
            "variables": {
                "$n": 5,
                "x": ["1 @ $init"],
                "x'": ["-x"],
                "I": {"equations": ["0"], "assignment": "add"},
            },
        },
        {
            "name": "C",
            "connect": {"pre": "A", "post": "A"},
            "variables": {
                "post.I": {"equations": ["pre.x"], "assignment": "add"},
            },
        },
    ],
}


@pytest.fixture
def euler_document():
    return copy.deepcopy(EULER_MODEL)


@pytest.fixture
def connection_document():
    return copy.deepcopy(CONNECTION_MODEL)


@pytest.fixture
def float_config():
    return parse_compile_config({})


# --- Pipeline helpers ---

@pytest.fixture
def build_model():
    """Returns a function turning a model dictionary into an EquationSet tree."""
    def _build(document):
        return ModelBuilder().build(ModelParser().parse_dict(document))
    return _build


@pytest.fixture
def analyze(tmp_path, build_model):
    """Returns a function that runs every analysis pass and returns (root, plan table)."""
    def _analyze(document, config: CompileConfig = None):
        root = build_model(document)
        table = CompileJob(config or CompileConfig(), tmp_path / "job").analyze(root)
        return root, table
    return _analyze


@pytest.fixture
def generate(analyze):
    """Returns a function that compiles a model dictionary to C++ text."""
    def _generate(document, config: CompileConfig = None):
        config = config or CompileConfig()
        root, table = analyze(document, config)
        return ProgramGenerator(config).generate(root, table)
    return _generate


@pytest.fixture
def body_of():
    """Returns a function extracting the body of one generated member function."""
    def _body_of(source: str, signature: str) -> str:
        pattern = re.escape(signature) + r"\n\{\n(.*?)\n\}\n"
        match = re.search(pattern, source, re.DOTALL)
        assert match is not None, f"'{signature}' not found in generated source"
        return match.group(1)
    return _body_of
