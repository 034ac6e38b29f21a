"""
Boundary validation for engine operations.

Raw payloads are checked with DRF serializers before any core operation runs.
``validate_payload`` never raises; ``require_valid`` turns a failed result
into the engine's ``ValidationError``.
"""

from dataclasses import dataclass, field
from typing import Optional
import logging

from rest_framework import serializers

from core_backend.exceptions import ValidationError

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    ok: bool
    data: Optional[dict] = None
    errors: dict = field(default_factory=dict)

    @property
    def first_error(self) -> str:
        """The first error message, used as the human-readable summary."""
        return _first_message(self.errors) or "Dữ liệu không hợp lệ"


def _first_message(errors):
    if isinstance(errors, dict):
        # Cross-field errors first
        keys = sorted(errors, key=lambda key: key != "non_field_errors")
        for key in keys:
            message = _first_message(errors[key])
            if message:
                return message
    elif isinstance(errors, (list, tuple)):
        for entry in errors:
            message = _first_message(entry)
            if message:
                return message
    elif errors:
        return str(errors)
    return None


def validate_payload(serializer_class, data) -> ValidationResult:
    serializer = serializer_class(data=data if data is not None else {})
    if serializer.is_valid():
        return ValidationResult(ok=True, data=dict(serializer.validated_data))
    return ValidationResult(ok=False, errors=serializer.errors)


def require_valid(serializer_class, data) -> dict:
    result = validate_payload(serializer_class, data)
    if not result.ok:
        logger.warning(f"{serializer_class.__name__} rejected payload: {result.errors}")
        raise ValidationError(result.first_error, details=_plain(result.errors))
    return result.data


def _plain(errors):
    """Converts DRF ErrorDetail containers to plain dicts, lists and strings."""
    if isinstance(errors, dict):
        return {key: _plain(value) for key, value in errors.items()}
    if isinstance(errors, (list, tuple)):
        return [_plain(value) for value in errors]
    return str(errors)


def require_id(value, name):
    """Validates a single positional identifier (order id, item id, ...)."""
    message = f"Mã {name} không hợp lệ"
    id_field = serializers.IntegerField(
        min_value=1, error_messages={"invalid": message, "min_value": message, "null": message, "required": message}
    )
    try:
        return id_field.run_validation(value)
    except serializers.ValidationError as exc:
        raise ValidationError(_first_message(exc.detail) or message, details={name: str(value)})
