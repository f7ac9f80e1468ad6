# --- src/simgen_core/constants.py ---
import logging
from enum import Enum

logger = logging.getLogger(__name__)

# --- Fixed-Point Representation ---

#: Index of the most significant magnitude bit of the 32-bit signed integer used
#: for fixed-point values. Bit 31 is the sign.
MSB: int = 30

#: Marker for an exponent that has not been determined yet.
UNKNOWN = None

#: Upper bound on bottom-up exponent sweeps before resolution is declared failed.
MAX_EXPONENT_ITERATIONS: int = 200

# --- Event Timing ---

#: Relative tolerance for treating an event delay as an exact multiple of dt.
DELAY_ALIGNMENT_TOLERANCE: float = 1e-3

#: Nudge applied to an aligned delay so the spike lands strictly before or
#: after the step boundary.
DELAY_NUDGE: float = 1e-6

# --- Simulation Defaults ---

DEFAULT_DT: float = 1e-4
DEFAULT_DURATION: float = 1.0


class NumericType(Enum):
    """Target numeric representation. The value is the C++ type name."""
    FLOAT = "float"
    DOUBLE = "double"
    INT = "int"

    @property
    def is_fixed_point(self) -> bool:
        return self is NumericType.INT


class EventMode(Enum):
    """When spikes are processed relative to the owning time step."""
    BEFORE = "before"
    DURING = "during"
    AFTER = "after"


class Integrator(Enum):
    """Integrator class names provided by the runtime."""
    EULER = "Euler"
    RUNGE_KUTTA = "RungeKutta"
