# src/simgen_core/toolchain/build.py
"""
Drives the native C++ compiler: precompiles the runtime once per numeric type
and links generated models against it.

Every command is a blocking subprocess whose stdout and stderr go to
`compile.out` and `compile.err` in the job directory. A nonzero exit deletes
both captures (and any partial output) and raises BuildFailureError carrying
the compiler's stderr. Builds are never retried.
"""
import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

from ..config import CompileConfig
from .exceptions import BuildFailureError, MissingRuntimeError
from .runtime_cache import RuntimeCache

logger = logging.getLogger(__name__)

OPTIMIZE = ["-O3", "-std=c++11", "-ffunction-sections", "-fdata-sections"]
GC_SECTIONS = "-Wl,--gc-sections"


class BuildInvoker:
    """Forms and runs compiler commands for one configuration."""

    def __init__(self, config: CompileConfig):
        self.config = config
        self.T = config.T
        self.cache = config.runtime_cache or RuntimeCache()

    # --- Paths and flags ---

    @property
    def runtime_dir(self) -> Path:
        runtime_dir = self.config.runtime_dir
        if runtime_dir is None:
            raise MissingRuntimeError(path="<unset>", details="No runtime directory is configured.")
        if not (runtime_dir / "runtime.h").exists():
            raise MissingRuntimeError(path=str(runtime_dir), details="runtime.h was not found.")
        return runtime_dir

    def runtime_stems(self) -> List[str]:
        stems = ["runtime", "io"]
        if self.config.fixed_point:
            stems.append("fixedpoint")
        return stems

    def runtime_objects(self) -> List[Path]:
        return [self.runtime_dir / f"{stem}_{self.T}.o" for stem in self.runtime_stems()]

    def common_flags(self) -> List[str]:
        flags = OPTIMIZE + [f"-I{self.runtime_dir}", f"-Dn2a_T={self.T}"]
        if self.config.fixed_point:
            flags.append("-Dn2a_FP")
        flags.extend(self.config.extra_flags)
        return flags

    # --- Commands ---

    def run(self, command: Sequence[str], job_dir: Path, output: Optional[Path] = None) -> Path:
        """
        Runs one command with its output captured in the job directory.

        Args:
            command: The command line. Empty arguments are dropped.
            job_dir: Directory receiving compile.out and compile.err.
            output: The file the command produces, deleted if the command fails.

        Returns:
            The path of the captured stdout.

        Raises:
            BuildFailureError: If the command cannot start or exits nonzero.
        """
        command = [str(c) for c in command if c]
        job_dir = Path(job_dir)
        job_dir.mkdir(parents=True, exist_ok=True)
        out = job_dir / "compile.out"
        err = job_dir / "compile.err"
        logger.info(" ".join(command))

        with open(out, "wb") as stdout, open(err, "wb") as stderr:
            try:
                completed = subprocess.run(command, stdout=stdout, stderr=stderr)
                returncode = completed.returncode
            except OSError as e:
                returncode = None
                failure = str(e)

        if returncode == 0:
            err.unlink()
            return out

        if returncode is not None:
            failure = err.read_text(encoding="utf-8", errors="replace")
        for path in (out, err, output):
            if path is not None and path.exists():
                path.unlink()
        logger.error(f"Failed to compile:\n{failure}")
        raise BuildFailureError(command=tuple(command), stderr=failure)

    def compile_runtime(self, job_dir: Path) -> List[Path]:
        """
        Ensures the runtime objects for this numeric type exist and match the
        current sources and flags, compiling whichever are missing.
        """
        runtime_dir = self.runtime_dir
        flags = self.common_flags()
        objects = self.runtime_objects()
        if self.cache.is_current(runtime_dir, self.T, flags, objects):
            logger.debug(f"Runtime objects for '{self.T}' are current.")
            return objects

        stamp = self.cache.stamp_path(runtime_dir, self.T)
        if not stamp.exists() or stamp.read_text(encoding="utf-8").strip() != self.cache.digest(runtime_dir, flags):
            self.cache.invalidate(runtime_dir, self.T, objects)

        for stem, obj in zip(self.runtime_stems(), objects):
            if obj.exists():
                continue
            source = runtime_dir / f"{stem}.cc"
            if not source.exists():
                raise MissingRuntimeError(path=str(runtime_dir), details=f"{source.name} was not found.")
            logger.info(f"Compiling runtime object {obj.name}.")
            out = self.run([self.config.compiler, "-c", *flags, "-o", obj, source], job_dir, output=obj)
            out.unlink()

        self.cache.record(runtime_dir, self.T, flags)
        return objects

    def link_model(self, source: Path, job_dir: Path) -> Path:
        """Compiles the generated source and links it with the runtime objects. Returns the binary path."""
        source = Path(source)
        binary = source.parent / (source.name.split(".", 1)[0] + ".bin")
        objects = self.compile_runtime(job_dir)
        command = [self.config.compiler, *self.common_flags(), GC_SECTIONS, *objects, "-o", binary, source]
        out = self.run(command, job_dir, output=binary)
        out.unlink()
        logger.info(f"Built model binary {binary}.")
        return binary
