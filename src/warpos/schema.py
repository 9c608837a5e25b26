"""JSON-Schema validation adapter.

Every check collects the complete list of violations in one pass so callers
can report all problems at once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError
from jsonschema.validators import validator_for

from .errors import ValidationError

logger = logging.getLogger(__name__)

JsonSchema = Mapping[str, Any]


@dataclass(frozen=True)
class SchemaValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


def _pointer(path: Any) -> str:
    parts = [str(part) for part in path]
    return "/" + "/".join(parts) if parts else "/"


def _build_validator(schema: JsonSchema) -> Any:
    validator_cls = validator_for(schema, default=Draft202012Validator)
    return validator_cls(schema, format_checker=validator_cls.FORMAT_CHECKER)


def check_schema(schema: Any, label: str) -> None:
    """Reject a document that is not itself a valid JSON schema.

    Raises:
        ValidationError: If ``schema`` is not a mapping or is malformed.
    """
    if not isinstance(schema, Mapping):
        raise ValidationError(label, ["/ schema must be an object"])
    validator_cls = validator_for(schema, default=Draft202012Validator)
    try:
        validator_cls.check_schema(schema)
    except SchemaError as exc:
        raise ValidationError(label, [f"{_pointer(exc.absolute_path)} {exc.message}"]) from None


def validate_schema(schema: JsonSchema, value: Any) -> SchemaValidationResult:
    """Validate ``value`` against ``schema`` and return every violation.

    Each error reads ``"<json-pointer> <message>"``; errors are sorted by
    location so output is stable across runs.
    """
    validator = _build_validator(schema)
    errors = sorted(validator.iter_errors(value), key=lambda err: (list(map(str, err.absolute_path)), err.message))
    if not errors:
        return SchemaValidationResult(valid=True)
    messages = [f"{_pointer(err.absolute_path)} {err.message}" for err in errors]
    logger.debug("Schema validation produced %d error(s)", len(messages))
    return SchemaValidationResult(valid=False, errors=messages)


def ensure_valid(schema: JsonSchema, value: Any, label: str) -> None:
    """Raise :class:`ValidationError` listing all violations when ``value`` is invalid."""
    result = validate_schema(schema, value)
    if not result.valid:
        raise ValidationError(label, result.errors)
