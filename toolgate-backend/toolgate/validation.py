"""
Validation helpers: pick a schema by tag, validate, and turn SchemaValidationError into the
failure/deny branch of the result algebra. These are the only places validation errors are caught.
"""
import json
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from toolgate.errors import ProtocolError, SchemaValidationError
from toolgate.results import (
    ERROR_KIND_SCHEMA,
    PolicyDenyNoResult,
    PolicyOutcome,
    ToolFailureNoResult,
    ToolResponse,
)
from toolgate.schemas import NO_VALUE, Schema


def _message(phase: str, stage: str, err: SchemaValidationError) -> str:
    descriptor = "parameters" if stage == "input" else "result"
    return f"Invalid {phase} {descriptor}: {err.message}"


def validate_or_fail(value: Any, schema: Schema, phase: str, stage: str) -> Tuple[bool, Any]:
    """
    Returns (True, parsed) or (False, ToolFailureNoResult).
    phase: precheck | execute; stage: input | output.
    """
    try:
        return True, schema.validate(value)
    except SchemaValidationError as e:
        return False, ToolFailureNoResult(message=_message(phase, stage, e), error_kind=ERROR_KIND_SCHEMA)


def validate_or_deny(value: Any, schema: Schema, phase: str, stage: str) -> Tuple[bool, Any]:
    """
    Returns (True, parsed) or (False, PolicyDenyNoResult).
    phase: precheck | evaluate | commit; stage: input | output.
    """
    try:
        return True, schema.validate(value)
    except SchemaValidationError as e:
        return False, PolicyDenyNoResult(error=_message(phase, stage, e))


def schema_for_policy_result(outcome: PolicyOutcome, allow_schema: Schema, deny_schema: Schema) -> Schema:
    return (allow_schema if outcome.allow else deny_schema) or NO_VALUE


def schema_for_tool_result(outcome: ToolResponse, success_schema: Schema, fail_schema: Schema) -> Schema:
    return (success_schema if outcome.success else fail_schema) or NO_VALUE


# -- remote dispatch envelope --------------------------------------------------


class RemoteExecutionResult(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    success: bool
    result: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = Field(default=None, alias="errorKind")

    @property
    def has_result(self) -> bool:
        """False when the executor sent no result key at all."""
        return "result" in self.model_fields_set


class DispatchEnvelope(BaseModel):
    """{toolExecutionResult, toolContext} as returned by the executor."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    tool_execution_result: RemoteExecutionResult = Field(alias="toolExecutionResult")
    tool_context: Optional[Dict[str, Any]] = Field(default=None, alias="toolContext")


def parse_dispatch_envelope(raw: Any) -> DispatchEnvelope:
    """Accepts a JSON string or mapping. Raises ProtocolError with a diagnostic message."""
    parsed = raw
    if isinstance(raw, (str, bytes)):
        try:
            parsed = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"Remote tool returned a non-JSON response: {preview(raw)} ({e})") from e
    if not isinstance(parsed, dict):
        raise ProtocolError(f"Remote tool returned an unexpected response: {preview(parsed)}")
    try:
        return DispatchEnvelope.model_validate(parsed)
    except ValidationError as e:
        raise ProtocolError(
            f"Remote tool response is not a dispatch envelope: {preview(parsed)} ({e.error_count()} errors)"
        ) from e


def preview(value: Any, limit: int = 300) -> str:
    try:
        s = json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        s = repr(value)
    return s if len(s) <= limit else s[:limit] + "..."
