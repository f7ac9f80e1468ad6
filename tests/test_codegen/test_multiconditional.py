# tests/test_codegen/test_multiconditional.py
"""Evaluation of variables with several conditional equations, per phase."""


def part_with(variables, extra_parts=()):
    base = {"$n": 5, "x": ["1 @ $init"], "x'": "-x"}
    base.update(variables)
    return {"name": "Model", "parts": [{"name": "A", "variables": base}, *extra_parts]}


def lines_of(body):
    return [line.strip() for line in body.splitlines()]


def test_conditions_are_tested_in_declaration_order(generate, body_of):
    source = generate(part_with({"y": ["2 @ $init", "3 @ x > 0.5", "4 @ x > 0.2", "5"]}))
    update = lines_of(body_of(source, "void Model_A::update ()"))
    start = update.index("if (_x > 0.5)")
    assert update[start:start + 12] == [
        "if (_x > 0.5)", "{", "_y = 3;", "}",
        "else if (_x > 0.2)", "{", "_y = 4;", "}",
        "else", "{", "_y = 5;", "}",
    ]
    assert "_y = 2;" not in update


def test_init_falls_back_to_init_equation(generate, body_of):
    source = generate(part_with({"y": ["2 @ $init", "3 @ x > 0.5", "5"]}))
    init = lines_of(body_of(source, "void Model_A::init ()"))
    start = init.index("if (_x > 0.5)")
    assert init[start:start + 8] == ["if (_x > 0.5)", "{", "_y = 3;", "}", "else", "{", "_y = 2;", "}"]
    assert "_y = 5;" not in init


def test_phase_equations_stay_in_their_phase(generate, body_of):
    source = generate(part_with({"y": ["7 @ $connect", "2 @ $init", "5"]}))
    init = lines_of(body_of(source, "void Model_A::init ()"))
    update = lines_of(body_of(source, "void Model_A::update ()"))
    assert "_y = 2;" in init
    assert "_y = 7;" not in init
    assert "_y = 5;" in update
    assert "_y = 7;" not in update and "_y = 2;" not in update


def test_type_defaults_to_no_change(generate, body_of):
    source = generate(part_with(
        {"$type": ["split(B) @ x < 0.5"]},
        [{"name": "B", "variables": {"x": ["1 @ $init"], "x'": "x"}}],
    ))
    update = lines_of(body_of(source, "void Model_A::update ()"))
    start = update.index("if (_x < 0.5)")
    assert update[start:start + 8] == ["if (_x < 0.5)", "{", "__24type = 1;", "}", "else", "{", "__24type = 0;", "}"]


def test_connection_probability_defaults_to_one(generate, body_of, connection_document):
    connection_document["parts"][1]["variables"]["$p"] = ["0.5 @ pre.x > 0.5"]
    source = generate(connection_document)
    p = lines_of(body_of(source, "float Model_C::getP ()"))
    assert "else" in p
    assert p[p.index("else") + 2] == "__24p = 1;"
    assert p[-1] == "return __24p;"


def test_buffered_member_keeps_its_value(generate, body_of, connection_document):
    connection_document["parts"][0]["variables"]["V"] = ["0 @ $init", "V + 1 @ x > 0.5"]
    connection_document["parts"][1]["variables"]["post.I"]["equations"] = ["pre.V"]
    source = generate(connection_document)
    update = lines_of(body_of(source, "void Model_A::update ()"))
    start = update.index("if (_x > 0.5)")
    assert update[start:start + 8] == [
        "if (_x > 0.5)", "{", "next__V = _V + 1;", "}", "else", "{", "next__V = _V;", "}",
    ]
