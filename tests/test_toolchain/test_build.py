# tests/test_toolchain/test_build.py
"""
Tests for the native build driver. The compiler is replaced by a fake
`subprocess.run` that records each command and creates its output file.
"""
import subprocess
from pathlib import Path

import pytest

from simgen_core.config import parse_compile_config
from simgen_core.toolchain import BuildFailureError, BuildInvoker, MissingRuntimeError, RuntimeCache


class FakeCompiler:
    """Stands in for subprocess.run. Writes the '-o' target unless told to fail."""

    def __init__(self, returncode=0, stderr=b""):
        self.commands = []
        self.returncode = returncode
        self.stderr = stderr

    def __call__(self, command, stdout=None, stderr=None):
        self.commands.append(list(command))
        if "-o" in command:
            Path(command[command.index("-o") + 1]).write_bytes(b"\x7fELF")
        if self.stderr:
            stderr.write(self.stderr)
        return subprocess.CompletedProcess(command, self.returncode)


@pytest.fixture
def runtime_dir(tmp_path):
    path = tmp_path / "runtime"
    path.mkdir()
    for name in ("runtime.h", "runtime.cc", "io.cc", "fixedpoint.cc"):
        (path / name).write_text(f"// {name}\n")
    return path


@pytest.fixture
def fake_compiler(monkeypatch):
    fake = FakeCompiler()
    monkeypatch.setattr(subprocess, "run", fake)
    return fake


def make_invoker(runtime_dir, cache=None, **raw):
    raw.setdefault("runtime_dir", str(runtime_dir))
    return BuildInvoker(parse_compile_config(raw, runtime_cache=cache))


# --- Flags ---

def test_common_flags_float(runtime_dir):
    flags = make_invoker(runtime_dir).common_flags()
    assert flags[:4] == ["-O3", "-std=c++11", "-ffunction-sections", "-fdata-sections"]
    assert f"-I{runtime_dir}" in flags
    assert "-Dn2a_T=float" in flags
    assert "-Dn2a_FP" not in flags


def test_common_flags_fixed_point(runtime_dir):
    invoker = make_invoker(runtime_dir, numeric_type="int", extra_flags="-g -DDEBUG")
    flags = invoker.common_flags()
    assert "-Dn2a_T=int" in flags
    assert "-Dn2a_FP" in flags
    assert flags[-2:] == ["-g", "-DDEBUG"]
    assert [o.name for o in invoker.runtime_objects()] == ["runtime_int.o", "io_int.o", "fixedpoint_int.o"]


def test_missing_runtime_directory(tmp_path):
    invoker = BuildInvoker(parse_compile_config({}))
    with pytest.raises(MissingRuntimeError):
        invoker.common_flags()
    invoker = make_invoker(tmp_path / "absent")
    with pytest.raises(MissingRuntimeError, match="runtime.h"):
        invoker.runtime_objects()


# --- Runtime objects ---

def test_runtime_compiled_once_per_cache(runtime_dir, fake_compiler, tmp_path):
    cache = RuntimeCache()
    invoker = make_invoker(runtime_dir, cache)
    objects = invoker.compile_runtime(tmp_path / "job")
    assert [o.name for o in objects] == ["runtime_float.o", "io_float.o"]
    assert all(o.exists() for o in objects)
    assert len(fake_compiler.commands) == 2
    first = fake_compiler.commands[0]
    assert first[:2] == ["g++", "-c"]
    assert first[-1] == str(runtime_dir / "runtime.cc")
    assert RuntimeCache.stamp_path(runtime_dir, "float").exists()

    invoker.compile_runtime(tmp_path / "job")
    assert len(fake_compiler.commands) == 2
    assert cache.get_stats()["hits"] == 1


def test_stamp_survives_new_cache(runtime_dir, fake_compiler, tmp_path):
    make_invoker(runtime_dir, RuntimeCache()).compile_runtime(tmp_path / "job")
    make_invoker(runtime_dir, RuntimeCache()).compile_runtime(tmp_path / "job")
    assert len(fake_compiler.commands) == 2


def test_changed_source_rebuilds_everything(runtime_dir, fake_compiler, tmp_path):
    make_invoker(runtime_dir, RuntimeCache()).compile_runtime(tmp_path / "job")
    (runtime_dir / "runtime.h").write_text("// changed\n")
    make_invoker(runtime_dir, RuntimeCache()).compile_runtime(tmp_path / "job")
    assert len(fake_compiler.commands) == 4


def test_changed_flags_change_digest(runtime_dir):
    a = RuntimeCache.digest(runtime_dir, ["-O3"])
    b = RuntimeCache.digest(runtime_dir, ["-O3", "-g"])
    assert a != b
    (runtime_dir / "notes.txt").write_text("ignored")
    assert RuntimeCache.digest(runtime_dir, ["-O3"]) == a


# --- Linking ---

def test_link_model(runtime_dir, fake_compiler, tmp_path):
    job_dir = tmp_path / "job"
    job_dir.mkdir()
    source = job_dir / "model.cc"
    source.write_text("int main () {}\n")

    binary = make_invoker(runtime_dir).link_model(source, job_dir)
    assert binary == job_dir / "model.bin"
    assert binary.exists()
    link = fake_compiler.commands[-1]
    assert "-Wl,--gc-sections" in link
    assert str(runtime_dir / "runtime_float.o") in link
    assert link[-3:] == ["-o", str(binary), str(source)]
    assert not (job_dir / "compile.out").exists()
    assert not (job_dir / "compile.err").exists()


def test_failed_compile_removes_outputs(runtime_dir, monkeypatch, tmp_path):
    fake = FakeCompiler(returncode=1, stderr=b"model.cc:1: error: expected ';'")
    monkeypatch.setattr(subprocess, "run", fake)
    job_dir = tmp_path / "job"

    with pytest.raises(BuildFailureError) as excinfo:
        make_invoker(runtime_dir).compile_runtime(job_dir)
    assert "expected ';'" in excinfo.value.stderr
    assert excinfo.value.command[0] == "g++"
    assert "Native Build Failure" in excinfo.value.get_diagnostic_report()
    assert not (job_dir / "compile.out").exists()
    assert not (job_dir / "compile.err").exists()
    assert not (runtime_dir / "runtime_float.o").exists()


def test_compiler_that_cannot_start(runtime_dir, monkeypatch, tmp_path):
    def missing(command, stdout=None, stderr=None):
        raise FileNotFoundError(2, "No such file or directory", command[0])

    monkeypatch.setattr(subprocess, "run", missing)
    with pytest.raises(BuildFailureError, match="No such file"):
        make_invoker(runtime_dir, compiler="clang++-99").compile_runtime(tmp_path / "job")
