"""
Result algebra shared by every phase.

Policy outcomes: PolicyAllow / PolicyAllowNoResult / PolicyDeny / PolicyDenyNoResult.
Tool outcomes:   ToolSuccess / ToolSuccessNoResult / ToolFailure / ToolFailureNoResult.

The allow/success tag is a class constant and is the only thing type guards look at.
Whether a result is carried is decided by the creators from the declared schema, never
guessed from the value.
"""
from dataclasses import dataclass, replace
from typing import Any, ClassVar, Dict, Optional, Union

from toolgate.schemas import NO_VALUE, Schema
from toolgate.tools.context import EvaluationContext


# -- policy outcomes ---------------------------------------------------------


@dataclass(frozen=True)
class PolicyAllow:
    result: Any
    allow: ClassVar[bool] = True
    has_result: ClassVar[bool] = True


@dataclass(frozen=True)
class PolicyAllowNoResult:
    allow: ClassVar[bool] = True
    has_result: ClassVar[bool] = False

    @property
    def result(self) -> None:
        return None


@dataclass(frozen=True)
class PolicyDeny:
    result: Any
    error: Optional[str] = None
    allow: ClassVar[bool] = False
    has_result: ClassVar[bool] = True


@dataclass(frozen=True)
class PolicyDenyNoResult:
    error: Optional[str] = None
    allow: ClassVar[bool] = False
    has_result: ClassVar[bool] = False

    @property
    def result(self) -> None:
        return None


PolicyOutcome = Union[PolicyAllow, PolicyAllowNoResult, PolicyDeny, PolicyDenyNoResult]
POLICY_OUTCOME_TYPES = (PolicyAllow, PolicyAllowNoResult, PolicyDeny, PolicyDenyNoResult)


def create_allow(result: Any = None, schema: Schema = NO_VALUE) -> PolicyOutcome:
    if schema.declared:
        return PolicyAllow(result=result)
    return PolicyAllowNoResult()


def create_deny(result: Any = None, schema: Schema = NO_VALUE, error: Optional[str] = None) -> PolicyOutcome:
    if schema.declared:
        return PolicyDeny(result=result, error=error)
    return PolicyDenyNoResult(error=error)


def is_policy_allow(value: Any) -> bool:
    return isinstance(value, POLICY_OUTCOME_TYPES) and value.allow is True


def is_policy_deny(value: Any) -> bool:
    return isinstance(value, POLICY_OUTCOME_TYPES) and value.allow is False


# -- tool outcomes -----------------------------------------------------------

ERROR_KIND_RUNTIME = "runtime"
ERROR_KIND_SCHEMA = "schema"


@dataclass(frozen=True)
class _ToolResponse:
    message: Optional[str] = None
    context: Optional[EvaluationContext] = None

    def with_context(self, context: Optional[EvaluationContext]):
        """Attach context; tag and payload are never touched."""
        return replace(self, context=context)


@dataclass(frozen=True)
class ToolSuccess(_ToolResponse):
    result: Any = None
    success: ClassVar[bool] = True
    has_result: ClassVar[bool] = True


@dataclass(frozen=True)
class ToolSuccessNoResult(_ToolResponse):
    success: ClassVar[bool] = True
    has_result: ClassVar[bool] = False

    @property
    def result(self) -> None:
        return None


@dataclass(frozen=True)
class ToolFailure(_ToolResponse):
    result: Any = None
    success: ClassVar[bool] = False
    has_result: ClassVar[bool] = True


@dataclass(frozen=True)
class ToolFailureNoResult(_ToolResponse):
    # ERROR_KIND_RUNTIME, ERROR_KIND_SCHEMA or None (policy deny, registry, transport)
    error_kind: Optional[str] = None
    success: ClassVar[bool] = False
    has_result: ClassVar[bool] = False

    @property
    def result(self) -> None:
        return None


ToolResponse = Union[ToolSuccess, ToolSuccessNoResult, ToolFailure, ToolFailureNoResult]
TOOL_RESPONSE_TYPES = (ToolSuccess, ToolSuccessNoResult, ToolFailure, ToolFailureNoResult)


def create_success(
    result: Any = None,
    schema: Schema = NO_VALUE,
    message: Optional[str] = None,
    context: Optional[EvaluationContext] = None,
) -> ToolResponse:
    if schema.declared:
        return ToolSuccess(result=result, message=message, context=context)
    return ToolSuccessNoResult(message=message, context=context)


def create_failure(
    result: Any = None,
    schema: Schema = NO_VALUE,
    message: Optional[str] = None,
    context: Optional[EvaluationContext] = None,
) -> ToolResponse:
    if schema.declared:
        return ToolFailure(result=result, message=message, context=context)
    return ToolFailureNoResult(message=message, context=context)


def failure_no_result(
    message: str, context: Optional[EvaluationContext] = None, error_kind: Optional[str] = None
) -> ToolFailureNoResult:
    """Failure with a human-readable message only (validation, registry, protocol, transport)."""
    return ToolFailureNoResult(message=message, context=context, error_kind=error_kind)


def is_success(value: Any) -> bool:
    return isinstance(value, TOOL_RESPONSE_TYPES) and value.success is True


def is_failure(value: Any) -> bool:
    return isinstance(value, TOOL_RESPONSE_TYPES) and value.success is False


def is_runtime_failure(value: Any) -> bool:
    """The tool raised or returned something other than succeed/fail."""
    return isinstance(value, ToolFailureNoResult) and value.error_kind == ERROR_KIND_RUNTIME


def is_schema_validation_failure(value: Any) -> bool:
    return isinstance(value, ToolFailureNoResult) and value.error_kind == ERROR_KIND_SCHEMA


# -- serialization -----------------------------------------------------------


def _plain(value: Any) -> Any:
    dump = getattr(value, "model_dump", None)
    if callable(dump):
        return dump(mode="json", by_alias=True)
    return value


def policy_outcome_to_dict(outcome: PolicyOutcome) -> Dict[str, Any]:
    out: Dict[str, Any] = {"allow": outcome.allow}
    if outcome.has_result:
        out["result"] = _plain(outcome.result)
    error = getattr(outcome, "error", None)
    if error is not None:
        out["error"] = error
    return out


def response_to_dict(response: ToolResponse) -> Dict[str, Any]:
    """camelCase dict matching the dispatch envelope's toolExecutionResult."""
    out: Dict[str, Any] = {"success": response.success}
    if response.has_result:
        out["result"] = _plain(response.result)
    if response.message is not None:
        out["error"] = response.message
    error_kind = getattr(response, "error_kind", None)
    if error_kind is not None:
        out["errorKind"] = error_kind
    if response.context is not None:
        out["context"] = response.context.to_wire()
    return out
