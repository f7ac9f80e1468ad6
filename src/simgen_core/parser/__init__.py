from .raw_data import ParsedMatrixData, ParsedPartNode, ParsedVariableData
from .parser import ModelParser
from .exceptions import ParsingError, SchemaValidationError

__all__ = [
    # IR Data Structures
    "ParsedMatrixData",
    "ParsedPartNode",
    "ParsedVariableData",
    # Parser and Exceptions
    "ModelParser",
    "ParsingError",
    "SchemaValidationError",
]
