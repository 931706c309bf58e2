"""
Exceptions raised inside toolgate.
Only ContractError is allowed to reach a caller of ToolClient; everything else
is converted into a tool/policy outcome close to where it happens.
"""
from typing import Any, Optional


class ToolgateError(Exception):
    """Base class for toolgate errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ContractError(ToolgateError):
    """Malformed policy/tool definition. Raised at class creation, never at call time."""


class SchemaValidationError(ToolgateError):
    """A value did not validate against a declared schema."""

    def __init__(self, message: str, detail: Optional[Any] = None) -> None:
        self.detail = detail
        super().__init__(message)


class RegistryError(ToolgateError):
    """Delegation or configured policies could not be resolved (not found / not permitted)."""


class ExecutorError(ToolgateError):
    """Transport-level failure talking to the remote executor (connection, timeout, HTTP status)."""


class ProtocolError(ToolgateError):
    """Remote executor answered, but not with a well-formed dispatch envelope."""
