# src/simgen_core/job.py
"""
The compile facade: one job turns an equation-set tree into `model.cc`, and
optionally into a native binary.

`CompileJob.run` is the single place where internal errors become user-facing.
Every DiagnosableError raised by analysis or synthesis is re-raised as one
CompileAbortError carrying its diagnostic report; failures of the native build
become ToolchainError. The generated source is written to `model.cc.tmp` and
only renamed to `model.cc` after generation succeeds, so an aborted job never
leaves a partial program behind.
"""
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .analysis import (
    BackendPlanner,
    EventAnalyzer,
    ExponentResolver,
    LifetimeAnalyzer,
    PlanTable,
    ReferenceResolver,
    StructureAnalyzer,
)
from .codegen import ProgramGenerator
from .config import CompileConfig, parse_compile_config
from .eqset import EquationSet, ModelBuilder
from .errors import CompileAbortError, DiagnosableError, ModelBuildError, ToolchainError, format_diagnostic_report
from .log_config import job_log
from .parser import ModelParser
from .toolchain import BuildInvoker, RuntimeCache, ToolchainInternalError

logger = logging.getLogger(__name__)

SOURCE_NAME = "model.cc"


@dataclass
class CompileResult:
    """What a successful job leaves behind."""
    root: EquationSet
    table: PlanTable
    source: Path
    binary: Optional[Path] = None


class CompileJob:
    """
    Runs the full pipeline for one model in one job directory.

    The passes run strictly in sequence, each over the whole tree: references,
    structure, events, planning, exponents (fixed point only), lifetimes, then
    code generation. The plan table and every attribute set are frozen before
    generation starts.
    """

    def __init__(self, config: CompileConfig, job_dir: Union[str, Path], build: bool = False):
        self.config = config
        self.job_dir = Path(job_dir)
        self.build = build

    def run(self, root: EquationSet) -> CompileResult:
        with job_log(self.job_dir):
            logger.info(f"--- Starting compile job for model '{root.name}' in {self.job_dir} ---")
            try:
                table = self.analyze(root)
                text = ProgramGenerator(self.config).generate(root, table)
                source = self.install(text)
            except DiagnosableError as e:
                logger.error(f"Compile job for '{root.name}' aborted.")
                raise CompileAbortError(e.get_diagnostic_report()) from e
            except Exception as e:
                report = format_diagnostic_report(
                    error_type=f"An Unexpected Error Occurred ({type(e).__name__})",
                    details=f"The compiler encountered an unexpected internal error: {str(e)}",
                    suggestion="This may indicate a bug in SimGen Core. Please review the traceback.",
                    context={'fqn': root.name}
                )
                logger.error(report)
                raise CompileAbortError(report) from e

            result = CompileResult(root=root, table=table, source=source)
            if self.build:
                try:
                    result.binary = BuildInvoker(self.config).link_model(source, self.job_dir)
                except ToolchainInternalError as e:
                    raise ToolchainError(e.get_diagnostic_report()) from e
            logger.info(f"--- Compile job for model '{root.name}' successful. ---")
            return result

    def analyze(self, root: EquationSet) -> PlanTable:
        logger.debug("Pass 1: resolving references...")
        ReferenceResolver(self.config.duration).resolve(root)
        logger.debug("Pass 2: structure, ordering and buffering...")
        StructureAnalyzer().analyze(root)
        logger.debug("Pass 3: events...")
        EventAnalyzer().analyze(root)
        logger.debug("Pass 4: storage planning...")
        table = BackendPlanner().plan(root)
        if self.config.fixed_point:
            logger.debug("Pass 5: fixed-point exponents...")
            ExponentResolver(self.config.duration).resolve(root)
        logger.debug("Pass 6: lifetimes...")
        LifetimeAnalyzer(table).analyze(root)

        for s in root.walk_top_down():
            for v in s.variables:
                v.attributes.freeze()
        return table

    def install(self, text: str) -> Path:
        self.job_dir.mkdir(parents=True, exist_ok=True)
        target = self.job_dir / SOURCE_NAME
        temporary = self.job_dir / (SOURCE_NAME + ".tmp")
        try:
            temporary.write_text(text, encoding="utf-8")
            os.replace(temporary, target)
        finally:
            if temporary.exists():
                temporary.unlink()
        logger.info(f"Wrote generated source {target}.")
        return target


def load_model(path: Union[str, Path]):
    """
    Parses and builds a model document.

    Returns:
        (root equation set, raw 'config' block of the document)

    Raises:
        ModelBuildError: With a diagnostic report, if loading fails.
    """
    try:
        parsed = ModelParser().parse(path)
        return ModelBuilder().build(parsed), parsed.raw_config or {}
    except DiagnosableError as e:
        raise ModelBuildError(e.get_diagnostic_report()) from e


def compile_model(
    path: Union[str, Path],
    job_dir: Union[str, Path],
    build: bool = False,
    overrides: Optional[Dict[str, Any]] = None,
    runtime_cache: Optional[RuntimeCache] = None,
) -> CompileResult:
    """
    Loads a model document and compiles it.

    Args:
        path: The YAML model document.
        job_dir: Directory receiving model.cc, the job log and build output.
        build: Also compile and link a native binary.
        overrides: Configuration values taking precedence over the document's 'config' block.
        runtime_cache: Shared cache of runtime build stamps.
    """
    root, raw_config = load_model(path)
    raw = dict(raw_config)
    raw.update(overrides or {})
    try:
        config = parse_compile_config(raw, runtime_cache=runtime_cache)
    except DiagnosableError as e:
        raise ModelBuildError(e.get_diagnostic_report()) from e
    return CompileJob(config, job_dir, build=build).run(root)
