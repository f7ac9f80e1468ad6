# src/simgen_core/parser/parser.py
import logging
import re
import string
from pathlib import Path
from typing import Any, Dict, List, Union

import cerberus
import yaml

from .raw_data import ParsedMatrixData, ParsedPartNode, ParsedVariableData
from .exceptions import ParsingError, SchemaValidationError

logger = logging.getLogger(__name__)

# Part names and connection aliases are plain identifiers.
ID_REGEX_FRAGMENT = r"[a-zA-Z_][a-zA-Z0-9_]*"
ID_REGEX = f"^{ID_REGEX_FRAGMENT}$"
ALLOWED_ID_CHARS = set(string.ascii_letters + string.digits + "_")

# Variable names may be specials ($n), derivatives (x'') and remote writes (post.I).
VARIABLE_NAME_FRAGMENT = r"\$?[a-zA-Z_][a-zA-Z0-9_]*"
VARIABLE_NAME_REGEX = f"^{VARIABLE_NAME_FRAGMENT}(\\.{VARIABLE_NAME_FRAGMENT})*'*$"

# Connection endpoints are dotted part paths relative to the connection's container.
PART_PATH_REGEX = f"^{ID_REGEX_FRAGMENT}(\\.{ID_REGEX_FRAGMENT})*$"


class EnhancedValidator(cerberus.Validator):
    """Custom Cerberus validator enforcing the model document's naming conventions."""
    def __init__(self, *args, **kwargs):
        super(EnhancedValidator, self).__init__(*args, **kwargs)
        self.rules['id_regex'] = {'schema': {'type': 'boolean'}}
        self.rules['variable_name_regex'] = {'schema': {'type': 'boolean'}}
        self.rules['part_path_regex'] = {'schema': {'type': 'boolean'}}
        self.rules['unique_elements_by_key'] = {'schema': {'type': 'string'}}

    def _validate_id_regex(self, constraint: bool, field: str, value: Any):
        if not constraint: return
        if not isinstance(value, str):
            self._error(field, "must be a string to be validated by id_regex.")
            return
        if not re.match(ID_REGEX, value):
            invalid_chars = sorted(list(set(value) - ALLOWED_ID_CHARS))
            self._error(
                field,
                f"Identifier '{value}' is invalid. Identifiers must start with a letter or underscore, "
                f"and can only contain letters, numbers, and underscores. Forbidden character(s): {invalid_chars}"
            )

    def _validate_variable_name_regex(self, constraint: bool, field: str, value: Any):
        if constraint and isinstance(value, str) and not re.match(VARIABLE_NAME_REGEX, value):
            self._error(
                field,
                f"Variable name '{value}' is invalid. Use an identifier, optionally starting with '$', "
                f"optionally dotted (e.g. 'post.I') and optionally followed by apostrophes for derivatives (e.g. \"v'\")."
            )

    def _validate_part_path_regex(self, constraint: bool, field: str, value: Any):
        if constraint and isinstance(value, str) and not re.match(PART_PATH_REGEX, value):
            self._error(field, f"Part path '{value}' is invalid. Must be a part name or a dotted chain of part names.")

    def _validate_unique_elements_by_key(self, key_for_uniqueness: str, field: str, value: List[Dict]):
        """
        Validates that all dictionaries in a list have a unique value for a given key.
        The rule's arguments are validated against this schema:
        {'type': 'string'}
        """
        if not isinstance(value, list):
            return
        seen_keys = set()
        duplicates = []
        for item in value:
            if not isinstance(item, dict):
                continue
            item_key = item.get(key_for_uniqueness)
            if item_key is not None:
                if item_key in seen_keys:
                    duplicates.append(item_key)
                else:
                    seen_keys.add(item_key)
        if duplicates:
            self._error(field, f"Duplicate values found for key '{key_for_uniqueness}': {sorted(set(duplicates))}")


class ModelParser:
    """
    Parses and validates a YAML model document.
    Its sole responsibility is to produce a tree of ParsedPartNode IR objects.
    """
    _equation_rule = {"type": ["string", "number"]}

    _variable_schema = {
        "equations": {"type": "list", "required": False, "schema": _equation_rule},
        "assignment": {"type": "string", "required": False, "allowed": ["replace", "add", "multiply", "divide", "min", "max"]},
        "temporary": {"type": "boolean", "required": False},
        "global": {"type": "boolean", "required": False},
        "dummy": {"type": "boolean", "required": False},
        "type": {"type": "string", "required": False, "allowed": ["scalar", "text", "matrix"]},
        "rows": {"type": "integer", "required": False, "min": 1},
        "cols": {"type": "integer", "required": False, "min": 1},
        "magnitude": {"type": "number", "required": False, "min": 0},
    }

    _variable_value_schema = {
        "oneof": [
            {"type": "dict", "schema": _variable_schema},
            {"type": ["string", "number"]},
            {"type": "list", "schema": _equation_rule},
        ]
    }

    _config_schema = {
        "numeric_type": {"type": "string"},
        "integrator": {"type": "string"},
        "event_mode": {"type": "string"},
        "duration": {"type": ["string", "number"]},
        "compiler": {"type": "string"},
        "runtime_dir": {"type": "string"},
        "extra_flags": {"type": ["string", "list"]},
    }

    _matrix_schema = {
        "file": {"type": "string", "required": True, "empty": False},
        "rows": {"type": "string", "required": True, "id_regex": True},
        "cols": {"type": "string", "required": True, "id_regex": True},
        "row_mapping": {"type": "string", "required": False},
        "col_mapping": {"type": "string", "required": False},
    }

    _part_schema = {
        "name": {"type": "string", "required": True, "empty": False, "id_regex": True},
        "variables": {"type": "dict", "required": False, "keysrules": {"type": "string", "variable_name_regex": True}, "valuesrules": _variable_value_schema},
        "parts": {"type": "list", "required": False, "unique_elements_by_key": "name", "schema": {"type": "dict"}},
        "connect": {"type": "dict", "required": False, "keysrules": {"type": "string", "id_regex": True}, "valuesrules": {"type": "string", "part_path_regex": True}},
        "matrix": {"type": "dict", "required": False, "schema": _matrix_schema},
    }

    _schema = dict(_part_schema)
    _schema["name"] = {"type": "string", "required": False, "id_regex": True}
    _schema["config"] = {"type": "dict", "required": False, "schema": _config_schema}

    def __init__(self):
        self._validator = EnhancedValidator(self._schema)
        self._validator.allow_unknown = False
        self._part_validator = EnhancedValidator(self._part_schema)
        self._part_validator.allow_unknown = False
        logger.info("ModelParser initialized with strict structural validation rules.")

    def parse(self, yaml_path: Union[str, Path]) -> ParsedPartNode:
        """Parses a model document, returning the root of the IR tree."""
        path = Path(yaml_path).resolve()
        logger.info(f"Parsing model document: {path}")
        content = self._load_yaml(path)
        if not self._validator.validate(content):
            raise SchemaValidationError(self._validator.errors, path)
        document = self._validator.document
        return self._build_node(document, path, default_name=path.stem, raw_config=document.get("config") or {})

    def parse_dict(self, content: Dict[str, Any], source: Union[str, Path] = "<memory>") -> ParsedPartNode:
        """Validates an already loaded document. Used by tests and embedding applications."""
        path = Path(source)
        if not self._validator.validate(content):
            raise SchemaValidationError(self._validator.errors, path)
        document = self._validator.document
        return self._build_node(document, path, default_name="Model", raw_config=document.get("config") or {})

    def _build_node(self, data: Dict[str, Any], path: Path, default_name: str = None, raw_config=None) -> ParsedPartNode:
        variables = [self._build_variable(name, raw) for name, raw in (data.get("variables") or {}).items()]

        parts = []
        for child in data.get("parts") or []:
            if not self._part_validator.validate(child):
                raise SchemaValidationError(
                    {f"parts.{child.get('name', '?')}.{k}": v for k, v in self._part_validator.errors.items()},
                    path,
                )
            parts.append(self._build_node(self._part_validator.document, path))

        matrix = None
        if raw_matrix := data.get("matrix"):
            matrix = ParsedMatrixData(
                file=raw_matrix["file"],
                rows=raw_matrix["rows"],
                cols=raw_matrix["cols"],
                row_mapping=raw_matrix.get("row_mapping"),
                col_mapping=raw_matrix.get("col_mapping"),
            )

        return ParsedPartNode(
            name=data.get("name") or default_name,
            source_yaml_path=path,
            variables=variables,
            parts=parts,
            connect=dict(data.get("connect") or {}),
            matrix=matrix,
            raw_config=raw_config,
        )

    @staticmethod
    def _build_variable(name: str, raw: Any) -> ParsedVariableData:
        if not isinstance(raw, dict):
            equations = raw if isinstance(raw, list) else [raw]
            return ParsedVariableData(name=name, equations=list(equations))
        return ParsedVariableData(
            name=name,
            equations=list(raw.get("equations") or []),
            assignment=raw.get("assignment", "replace"),
            temporary=raw.get("temporary", False),
            global_=raw.get("global", False),
            dummy=raw.get("dummy", False),
            value_type=raw.get("type", "scalar"),
            rows=raw.get("rows", 1),
            cols=raw.get("cols", 1),
            magnitude=raw.get("magnitude"),
        )

    def _load_yaml(self, source: Path) -> Dict[str, Any]:
        """Loads and performs basic sanity checks on a YAML file."""
        if not source.is_file():
            raise ParsingError(details=f"Model file not found at path: {source}", file_path=source)
        try:
            with source.open("r", encoding="utf-8") as f:
                content = yaml.safe_load(f)
            if content is None:
                raise ParsingError(details="The YAML file is empty or contains no valid content.", file_path=source)
            if not isinstance(content, dict):
                raise ParsingError(details="The root of the YAML file must be a dictionary (mapping).", file_path=source)
            return content
        except PermissionError as e:
            raise ParsingError(details=f"Permission denied when trying to read file: {e}", file_path=source) from e
        except yaml.YAMLError as e:
            raise ParsingError(details=f"Invalid YAML syntax: {e}", file_path=source) from e
