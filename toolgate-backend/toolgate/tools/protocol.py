"""
Tool contract: identity, parameter schema, supported policies with parameter mappings,
and two phases (precheck optional, execute required) with success/fail result schemas.
Phases are called as phase(tool_params, ctx) and return ctx.succeed(...) or ctx.fail(...).
"""
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, ClassVar, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel

from toolgate.errors import ContractError
from toolgate.policies.protocol import API_VERSION, Policy, assert_supported_api_version
from toolgate.results import PolicyDenyNoResult, PolicyOutcome, ToolResponse, create_failure, create_success
from toolgate.schemas import NO_VALUE, Schema, compile_schema
from toolgate.tools.context import EvaluationContext

CommitFn = Callable[[str, Any], Awaitable[PolicyOutcome]]

_SCHEMA_ATTRS = (
    "tool_params_schema",
    "precheck_success_schema",
    "precheck_fail_schema",
    "execute_success_schema",
    "execute_fail_schema",
)


@dataclass(frozen=True)
class SupportedPolicy:
    """A policy the tool accepts, plus tool-param name -> policy-param name."""

    policy: Policy
    parameter_mappings: Mapping[str, str] = field(default_factory=dict)

    @property
    def package_name(self) -> str:
        return self.policy.package_name

    @property
    def ipfs_cid(self) -> str:
        return self.policy.ipfs_cid


def _as_dict(tool_params: Any) -> Dict[str, Any]:
    if isinstance(tool_params, BaseModel):
        return tool_params.model_dump(mode="python")
    if isinstance(tool_params, Mapping):
        return dict(tool_params)
    return {}


def project_params(tool_params: Any, mappings: Mapping[str, str]) -> Dict[str, Any]:
    """Rename mapped tool params to the policy's names. Unmapped params are not passed on. Pure."""
    source = _as_dict(tool_params)
    return {policy_name: source[tool_name] for tool_name, policy_name in mappings.items() if tool_name in source}


def _declared_fields(type_: Any) -> Optional[set]:
    """Field names of a pydantic model (mappings use field names, not aliases); None if unknown."""
    if isinstance(type_, Schema):
        type_ = type_.type_
    if isinstance(type_, type) and issubclass(type_, BaseModel):
        return set(type_.model_fields)
    return None


class ToolPhaseContext:
    """Passed to tool phases. commit() is only bound during execute."""

    def __init__(
        self,
        base: EvaluationContext,
        success_schema: Schema,
        fail_schema: Schema,
        commit_fn: Optional[CommitFn] = None,
    ) -> None:
        self.base = base
        self._success_schema = success_schema
        self._fail_schema = fail_schema
        self._commit_fn = commit_fn

    @property
    def delegator(self):
        return self.base.delegation.delegator

    @property
    def policies_context(self):
        return self.base.policies_context

    @property
    def tool_ipfs_cid(self) -> str:
        return self.base.tool_ipfs_cid

    def succeed(self, result: Any = None) -> ToolResponse:
        return create_success(result, schema=self._success_schema)

    def fail(self, result: Any = None, message: Optional[str] = None) -> ToolResponse:
        return create_failure(result, schema=self._fail_schema, message=message)

    async def commit(self, package_name: str, params: Any = None) -> PolicyOutcome:
        if self._commit_fn is None:
            return PolicyDenyNoResult(error=f"commit is not available outside execute ({package_name})")
        return await self._commit_fn(package_name, params)


class Tool:
    package_name: ClassVar[str] = ""
    ipfs_cid: ClassVar[str] = ""
    api_version: ClassVar[str] = API_VERSION

    tool_params_schema: ClassVar[Any] = None
    supported_policies: ClassVar[List[SupportedPolicy]] = []
    precheck_success_schema: ClassVar[Any] = None
    precheck_fail_schema: ClassVar[Any] = None
    execute_success_schema: ClassVar[Any] = None
    execute_fail_schema: ClassVar[Any] = None

    precheck: Any = None
    steps: Optional[List[Any]] = None  # custom handler steps; None = default_pipeline_steps

    schemas: ClassVar[Dict[str, Schema]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if cls.__dict__.get("abstract", False):
            return
        if not cls.package_name:
            raise ContractError(f"tool {cls.__name__} has no package_name")
        if cls.tool_params_schema is None:
            raise ContractError(f"tool {cls.package_name} has no tool_params_schema")
        assert_supported_api_version(cls.api_version, f"tool {cls.package_name}")
        if cls.execute is Tool.execute:
            raise ContractError(f"tool {cls.package_name} has no execute()")
        if cls.precheck is not None and not callable(cls.precheck):
            raise ContractError(f"tool {cls.package_name}: precheck must be callable")
        if not cls.ipfs_cid:
            cls.ipfs_cid = cls.package_name
        cls.schemas = {
            attr: compile_schema(getattr(cls, attr), f"{cls.package_name}.{attr}") for attr in _SCHEMA_ATTRS
        }
        fields = _declared_fields(cls.tool_params_schema)
        seen = set()
        for sp in cls.supported_policies:
            if not isinstance(sp, SupportedPolicy) or not isinstance(sp.policy, Policy):
                raise ContractError(f"tool {cls.package_name}: supported_policies must hold SupportedPolicy(policy)")
            assert_supported_api_version(sp.policy.api_version, f"policy {sp.package_name}")
            for key in (sp.package_name, sp.ipfs_cid):
                if key in seen:
                    raise ContractError(f"tool {cls.package_name}: policy {key} is listed twice")
            seen.update({sp.package_name, sp.ipfs_cid})
            if fields is not None:
                unknown = [name for name in sp.parameter_mappings if name not in fields]
                if unknown:
                    raise ContractError(
                        f"tool {cls.package_name}: mapping for {sp.package_name} names unknown params {unknown}"
                    )

    def execute(self, tool_params: Any, ctx: ToolPhaseContext) -> ToolResponse:
        raise NotImplementedError

    def has_precheck(self) -> bool:
        return self.precheck is not None

    def phase_schemas(self, phase: str) -> Tuple[Schema, Schema]:
        return (
            self.schemas.get(f"{phase}_success_schema", NO_VALUE),
            self.schemas.get(f"{phase}_fail_schema", NO_VALUE),
        )

    def supported_policy(self, key: str) -> Optional[SupportedPolicy]:
        """Look up by package name or content id."""
        for sp in self.supported_policies:
            if key in (sp.package_name, sp.ipfs_cid):
                return sp
        return None

    def __repr__(self) -> str:
        return f"<Tool {self.package_name}>"
