"""
Schema validation for persisted documents.

Every document issueflow reads or writes passes through here. Callers decide
what a failure means: the state store treats it as fatal, the QA cache
resets to empty.
"""

import json
from importlib import resources
from pathlib import Path
from typing import Any

import jsonschema


class ValidationError(Exception):
    """Schema validation failed."""

    def __init__(self, schema_name: str, message: str, path: str | None = None):
        self.schema_name = schema_name
        self.message = message
        self.path = path
        super().__init__(f"[{schema_name}] {message}" + (f" at {path}" if path else ""))


# Schemas ship with the package and never change at runtime
_schema_cache: dict[str, dict] = {}


def _load_schema(schema_name: str) -> dict:
    if schema_name not in _schema_cache:
        resource = resources.files("issueflow") / "schemas" / f"{schema_name}.schema.json"
        try:
            _schema_cache[schema_name] = json.loads(resource.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise ValidationError(schema_name, f"Schema not found: {schema_name}.schema.json") from None
    return _schema_cache[schema_name]


def validate(data: Any, schema_name: str) -> None:
    """
    Validate data against a named schema.

    Raises:
        ValidationError: naming the first failing location
    """
    schema = _load_schema(schema_name)
    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as e:
        path = ".".join(str(p) for p in e.absolute_path) if e.absolute_path else "(root)"
        raise ValidationError(schema_name, e.message, path) from None


def load_json_document(filepath: Path, schema_name: str) -> dict:
    """
    Read a JSON file and validate it.

    Raises:
        ValidationError: if the file is missing, not JSON, or off-schema
    """
    try:
        text = filepath.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ValidationError(schema_name, f"File not found: {filepath}") from None

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(schema_name, f"Invalid JSON in {filepath}: {e}") from None

    validate(data, schema_name)
    return data


def validate_before_write(data: dict, schema_name: str, filepath: Path) -> None:
    """Refuse to persist a document that would not load back."""
    try:
        validate(data, schema_name)
    except ValidationError as e:
        raise ValidationError(
            schema_name,
            f"Refusing to write invalid data to {filepath}: {e.message}",
            e.path,
        ) from None
