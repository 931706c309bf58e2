"""
Policy contract: a subclass declares identity, schemas and up to three phases
(precheck, evaluate, commit). Each phase is called as phase(params, ctx) and returns
ctx.allow(...) or ctx.deny(...). Phases may be sync or async.

Composition is checked when the subclass is created (module load); a malformed
policy raises ContractError there and never at call time.
"""
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional, Tuple

from toolgate.errors import ContractError, SchemaValidationError
from toolgate.results import PolicyOutcome, create_allow, create_deny
from toolgate.schemas import NO_VALUE, Schema, compile_schema
from toolgate.tools.context import DelegatorInfo, EvaluationContext

API_VERSION = "1"
SUPPORTED_API_VERSIONS = frozenset({"1"})

PHASES = ("precheck", "evaluate", "commit")

_SCHEMA_ATTRS = (
    "tool_params_schema",
    "user_params_schema",
    "precheck_allow_result_schema",
    "precheck_deny_result_schema",
    "eval_allow_result_schema",
    "eval_deny_result_schema",
    "commit_params_schema",
    "commit_allow_result_schema",
    "commit_deny_result_schema",
)


def assert_supported_api_version(version: str, owner: str) -> None:
    if version not in SUPPORTED_API_VERSIONS:
        raise ContractError(
            f"{owner} targets API version {version!r}; supported: {sorted(SUPPORTED_API_VERSIONS)}"
        )


@dataclass(frozen=True)
class PolicyParams:
    tool_params: Any
    user_params: Any = None


@dataclass(frozen=True)
class CommitParams:
    params: Any


class PolicyPhaseContext:
    """What a phase sees: the invocation context plus allow/deny builders bound to this phase's schemas."""

    def __init__(self, base: EvaluationContext, allow_schema: Schema, deny_schema: Schema) -> None:
        self.base = base
        self._allow_schema = allow_schema
        self._deny_schema = deny_schema

    @property
    def app_id(self) -> Optional[int]:
        return self.base.app_id

    @property
    def app_version(self) -> Optional[int]:
        return self.base.app_version

    @property
    def delegator(self) -> Optional[DelegatorInfo]:
        return self.base.delegation.delegator

    @property
    def delegatee_address(self) -> str:
        return self.base.delegation.delegatee_address

    @property
    def tool_ipfs_cid(self) -> str:
        return self.base.tool_ipfs_cid

    def allow(self, result: Any = None) -> PolicyOutcome:
        """Shape follows the declared schema. The runtime turns the raise below into a deny."""
        if result is not None and not self._allow_schema.declared:
            raise SchemaValidationError("allow result given but no allow result schema is declared")
        return create_allow(result, schema=self._allow_schema)

    def deny(self, result: Any = None, error: Optional[str] = None) -> PolicyOutcome:
        if result is not None and not self._deny_schema.declared:
            raise SchemaValidationError("deny result given but no deny result schema is declared")
        return create_deny(result, schema=self._deny_schema, error=error)


class Policy:
    """
    Base class for policies. Subclasses set package_name and tool_params_schema at minimum.
    Schemas are pydantic models (or anything TypeAdapter accepts); None means "no value".
    """

    package_name: ClassVar[str] = ""
    ipfs_cid: ClassVar[str] = ""
    api_version: ClassVar[str] = API_VERSION

    tool_params_schema: ClassVar[Any] = None
    user_params_schema: ClassVar[Any] = None
    precheck_allow_result_schema: ClassVar[Any] = None
    precheck_deny_result_schema: ClassVar[Any] = None
    eval_allow_result_schema: ClassVar[Any] = None
    eval_deny_result_schema: ClassVar[Any] = None
    commit_params_schema: ClassVar[Any] = None
    commit_allow_result_schema: ClassVar[Any] = None
    commit_deny_result_schema: ClassVar[Any] = None

    # phases: None = absent
    precheck: Any = None
    evaluate: Any = None
    commit: Any = None

    schemas: ClassVar[Dict[str, Schema]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if cls.__dict__.get("abstract", False):
            return
        name = cls.__name__
        if not cls.package_name:
            raise ContractError(f"policy {name} has no package_name")
        if cls.tool_params_schema is None:
            raise ContractError(f"policy {cls.package_name} has no tool_params_schema")
        assert_supported_api_version(cls.api_version, f"policy {cls.package_name}")
        if not cls.ipfs_cid:
            cls.ipfs_cid = cls.package_name
        cls.schemas = {
            attr: compile_schema(getattr(cls, attr), f"{cls.package_name}.{attr}") for attr in _SCHEMA_ATTRS
        }
        for phase in PHASES:
            fn = getattr(cls, phase, None)
            if fn is not None and not callable(fn):
                raise ContractError(f"policy {cls.package_name}: {phase} must be callable")
        if cls.schemas["commit_params_schema"].declared and cls.commit is None:
            raise ContractError(f"policy {cls.package_name} defines commit_params_schema but no commit()")

    def has_phase(self, phase: str) -> bool:
        return getattr(self, phase, None) is not None

    def phase_schemas(self, phase: str) -> Tuple[Schema, Schema]:
        """(allow_schema, deny_schema) for a phase."""
        prefix = "eval" if phase == "evaluate" else phase
        return (
            self.schemas.get(f"{prefix}_allow_result_schema", NO_VALUE),
            self.schemas.get(f"{prefix}_deny_result_schema", NO_VALUE),
        )

    def __repr__(self) -> str:
        return f"<Policy {self.package_name}>"
