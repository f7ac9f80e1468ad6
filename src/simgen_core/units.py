# --- src/simgen_core/units.py ---
import pint
import logging

logger = logging.getLogger(__name__)
ureg = pint.UnitRegistry()
Quantity = ureg.Quantity
logger.debug("Pint Unit Registry initialized.")

# Canonical dimensionality for simulated time, used to validate durations and
# step sizes given as quantity strings ("100 ms").
TIME_DIMENSIONALITY = ureg.parse_expression('second').dimensionality


def to_seconds(value) -> float:
    """
    Converts a bare number (already seconds) or a pint-parsable time string into
    a float number of seconds.

    Raises:
        pint.DimensionalityError: If the quantity is not a time.
        pint.UndefinedUnitError: If the unit is unknown.
        ValueError: If the text is not a quantity at all.
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    qty = Quantity(str(value))
    if qty.dimensionless:
        return float(qty.magnitude)
    if qty.dimensionality != TIME_DIMENSIONALITY:
        raise pint.DimensionalityError(qty.units, ureg.second)
    return float(qty.to('second').magnitude)
