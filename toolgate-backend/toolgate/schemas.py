"""
Schema wrapper used by every policy/tool contract.
Schema(SomeModel) validates with pydantic; Schema(None) is the declared "no value" schema.
"""
from typing import Any, Optional

from pydantic import PydanticUserError, TypeAdapter, ValidationError

from toolgate.errors import ContractError, SchemaValidationError


class Schema:
    """Compiled once at class creation; validate()/dump() are safe to share across invocations."""

    def __init__(self, type_: Any = None, name: str = "") -> None:
        self.type_ = type_
        self.name = name
        self._adapter: Optional[TypeAdapter] = None
        if type_ is not None:
            try:
                self._adapter = TypeAdapter(type_)
            except (PydanticUserError, TypeError) as e:
                raise ContractError(f"schema {name or type_!r} is not a valid pydantic type: {e}") from e

    @property
    def declared(self) -> bool:
        return self._adapter is not None

    def validate(self, value: Any) -> Any:
        if self._adapter is None:
            if value is not None:
                raise SchemaValidationError("expected no value", detail={"got": type(value).__name__})
            return None
        try:
            return self._adapter.validate_python(value)
        except ValidationError as e:
            raise SchemaValidationError(_summarize(e), detail=e.errors(include_url=False)) from e

    def dump(self, value: Any) -> Any:
        """JSON-compatible form of a validated value."""
        if value is None:
            return None
        if self._adapter is None:
            return value
        return self._adapter.dump_python(value, mode="json", by_alias=True)

    def __repr__(self) -> str:
        return f"Schema({self.name or getattr(self.type_, '__name__', self.type_)!r})"


NO_VALUE = Schema(None, name="no-value")


def compile_schema(value: Any, name: str) -> Schema:
    """Accept a Schema, a pydantic-compatible type or None."""
    if isinstance(value, Schema):
        return value
    if value is None:
        return NO_VALUE
    return Schema(value, name=name)


def _summarize(e: ValidationError) -> str:
    parts = []
    for err in e.errors(include_url=False)[:5]:
        loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    more = e.error_count() - len(parts)
    if more > 0:
        parts.append(f"(+{more} more)")
    return "; ".join(parts)
