# src/simgen_core/config.py
"""
Parses the per-job compile configuration.

The configuration is a small bag of values: target numeric representation,
integrator, event-processing mode, simulated duration and the native toolchain
settings. Unsupported numeric types are a degraded-but-continue condition: a
warning is logged and a fallback is chosen. Anything else that cannot be
interpreted raises ConfigParsingError.
"""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, TYPE_CHECKING

import pint

from .constants import DEFAULT_DURATION, EventMode, Integrator, NumericType
from .errors import DiagnosableError, format_diagnostic_report
from .units import to_seconds

if TYPE_CHECKING:
    from .toolchain.runtime_cache import RuntimeCache

logger = logging.getLogger(__name__)


@dataclass()
class ConfigParsingError(DiagnosableError):
    """Raised when a configuration value cannot be interpreted."""
    key: str
    details: str

    def __str__(self):
        return f"Invalid compile configuration '{self.key}': {self.details}"

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Compile Configuration Error",
            details=self.details,
            suggestion="Check the 'config' block of the model document or the dictionary passed to the job.",
            context={'user_input': self.key}
        )


@dataclass(frozen=True)
class CompileConfig:
    """Immutable configuration for one compile job."""
    numeric_type: NumericType = NumericType.FLOAT
    integrator: Integrator = Integrator.EULER
    event_mode: EventMode = EventMode.DURING
    duration: float = DEFAULT_DURATION
    compiler: str = "g++"
    runtime_dir: Optional[Path] = None
    extra_flags: Tuple[str, ...] = ()
    runtime_cache: Optional["RuntimeCache"] = field(default=None, compare=False)

    @property
    def T(self) -> str:
        """The C++ spelling of the numeric type."""
        return self.numeric_type.value

    @property
    def fixed_point(self) -> bool:
        return self.numeric_type.is_fixed_point


def parse_numeric_type(raw: Optional[str]) -> NumericType:
    """
    Interprets a numeric type string. Integer widths other than plain 'int' fall
    back to 'int'; any other unknown string falls back to 'float'. Both fallbacks
    log a warning rather than fail.
    """
    if raw is None or raw == "":
        return NumericType.FLOAT
    text = str(raw).strip()
    for candidate in NumericType:
        if text == candidate.value:
            return candidate
    if text.startswith("int") and len(text) > 3:
        logger.warning(f"Only supported integer type is 'int'. Using int instead of '{text}'.")
        return NumericType.INT
    logger.warning(f"Unsupported numeric type '{text}'. Falling back to float.")
    return NumericType.FLOAT


def parse_integrator(raw: Optional[str]) -> Integrator:
    if raw and str(raw).strip().lower() == "rungekutta":
        return Integrator.RUNGE_KUTTA
    if raw and str(raw).strip().lower() != "euler":
        logger.warning(f"Unknown integrator '{raw}'. Using Euler.")
    return Integrator.EULER


def parse_event_mode(raw: Optional[str]) -> EventMode:
    if raw is None:
        return EventMode.DURING
    try:
        return EventMode(str(raw).strip().lower())
    except ValueError as e:
        raise ConfigParsingError(
            key="event_mode",
            details=f"'{raw}' is not one of: {', '.join(m.value for m in EventMode)}."
        ) from e


def parse_compile_config(raw: Optional[Dict[str, Any]], runtime_cache: Optional["RuntimeCache"] = None) -> CompileConfig:
    """
    Builds a CompileConfig from a raw dictionary (for example the 'config' block
    of a model document).

    Args:
        raw: Mapping of configuration keys. Missing keys take defaults.
        runtime_cache: Optional cache deciding whether runtime objects need a rebuild.

    Returns:
        The validated, immutable configuration.

    Raises:
        ConfigParsingError: If a value cannot be interpreted.
    """
    raw = dict(raw or {})
    try:
        duration = to_seconds(raw.get('duration', DEFAULT_DURATION))
    except (pint.DimensionalityError, pint.UndefinedUnitError, ValueError, TypeError) as e:
        raise ConfigParsingError(key="duration", details=f"Cannot interpret '{raw.get('duration')}' as a time: {e}") from e
    if duration <= 0:
        raise ConfigParsingError(key="duration", details="Duration must be positive.")

    runtime_dir = raw.get('runtime_dir')
    flags = raw.get('extra_flags') or ()
    if isinstance(flags, str):
        flags = tuple(flags.split())

    config = CompileConfig(
        numeric_type=parse_numeric_type(raw.get('numeric_type')),
        integrator=parse_integrator(raw.get('integrator')),
        event_mode=parse_event_mode(raw.get('event_mode')),
        duration=duration,
        compiler=str(raw.get('compiler', 'g++')),
        runtime_dir=Path(runtime_dir) if runtime_dir else None,
        extra_flags=tuple(str(f) for f in flags),
        runtime_cache=runtime_cache,
    )
    logger.debug(f"Compile configuration parsed: {config}")
    return config
