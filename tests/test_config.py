# tests/test_config.py
import logging
from pathlib import Path

import pytest

from simgen_core.config import CompileConfig, ConfigParsingError, parse_compile_config
from simgen_core.constants import DEFAULT_DURATION, EventMode, Integrator, NumericType
from simgen_core.units import to_seconds


def test_defaults():
    config = parse_compile_config(None)
    assert config == CompileConfig()
    assert config.numeric_type is NumericType.FLOAT
    assert config.integrator is Integrator.EULER
    assert config.event_mode is EventMode.DURING
    assert config.duration == DEFAULT_DURATION
    assert config.T == "float"
    assert not config.fixed_point


@pytest.mark.parametrize("raw, expected", [
    ("float", NumericType.FLOAT),
    ("double", NumericType.DOUBLE),
    ("int", NumericType.INT),
])
def test_supported_numeric_types(raw, expected):
    config = parse_compile_config({"numeric_type": raw})
    assert config.numeric_type is expected


def test_integer_widths_fall_back_to_int(caplog):
    with caplog.at_level(logging.WARNING):
        config = parse_compile_config({"numeric_type": "int16"})
    assert config.numeric_type is NumericType.INT
    assert config.fixed_point
    assert "Only supported integer type is 'int'" in caplog.text


def test_unknown_numeric_type_falls_back_to_float(caplog):
    with caplog.at_level(logging.WARNING):
        config = parse_compile_config({"numeric_type": "quad"})
    assert config.numeric_type is NumericType.FLOAT
    assert "Falling back to float" in caplog.text


def test_integrator_and_event_mode():
    config = parse_compile_config({"integrator": "rungekutta", "event_mode": "AFTER"})
    assert config.integrator is Integrator.RUNGE_KUTTA
    assert config.event_mode is EventMode.AFTER


def test_unknown_event_mode_is_an_error():
    with pytest.raises(ConfigParsingError) as excinfo:
        parse_compile_config({"event_mode": "sometimes"})
    assert excinfo.value.key == "event_mode"
    assert "before, during, after" in excinfo.value.get_diagnostic_report()


@pytest.mark.parametrize("raw, seconds", [
    ("100 ms", 0.1),
    ("2 s", 2.0),
    (5, 5.0),
    ("1.5", 1.5),
])
def test_duration_units(raw, seconds):
    assert parse_compile_config({"duration": raw}).duration == pytest.approx(seconds)


@pytest.mark.parametrize("raw", ["5 meter", "soon", -1, 0])
def test_invalid_duration(raw):
    with pytest.raises(ConfigParsingError) as excinfo:
        parse_compile_config({"duration": raw})
    assert excinfo.value.key == "duration"


def test_toolchain_settings():
    config = parse_compile_config({"runtime_dir": "/opt/runtime", "compiler": "clang++", "extra_flags": ["-g"]})
    assert config.runtime_dir == Path("/opt/runtime")
    assert config.compiler == "clang++"
    assert config.extra_flags == ("-g",)


def test_to_seconds_accepts_quantities():
    assert to_seconds("250 us") == pytest.approx(250e-6)
