"""
Run configured policies for one tool invocation, in configured order; first deny wins.
Later policies are never invoked once one denies.
"""
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from toolgate.errors import RegistryError
from toolgate.policies.protocol import Policy
from toolgate.policies.runtime import PolicyRuntime
from toolgate.registry.protocol import ConfiguredPolicy
from toolgate.results import PolicyOutcome
from toolgate.tools.context import AllowedPolicy, DeniedPolicy, EvaluationContext, PoliciesContext
from toolgate.tools.protocol import Tool, project_params

log = logging.getLogger(__name__)

OnPolicyFn = Callable[[str, PolicyOutcome], Any]


@dataclass(frozen=True)
class ValidatedPolicy:
    package_name: str
    policy: Policy
    tool_policy_params: Dict[str, Any]
    user_params: Any = None


def decode_policy_params(raw: Any) -> Any:
    """Stored user params: JSON text, bytes or an already-decoded mapping. Empty means none."""
    if raw is None:
        return None
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    if isinstance(raw, str):
        if not raw.strip():
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            raise RegistryError(f"stored policy parameters are not valid JSON: {e}") from e
    if isinstance(raw, dict) and not raw:
        return None
    return raw


def resolve_configured_policies(
    tool: Tool, configured: Sequence[ConfiguredPolicy], tool_params: Any
) -> List[ValidatedPolicy]:
    """Match configured policies to the tool's supported ones and project params. Raises RegistryError."""
    out: List[ValidatedPolicy] = []
    for item in configured:
        sp = tool.supported_policy(item.policy_ipfs_cid)
        if sp is None:
            raise RegistryError(
                f"policy {item.policy_ipfs_cid} is configured but not supported by tool {tool.package_name}"
            )
        out.append(
            ValidatedPolicy(
                package_name=sp.package_name,
                policy=sp.policy,
                tool_policy_params=project_params(tool_params, sp.parameter_mappings),
                user_params=decode_policy_params(item.parameters),
            )
        )
    return out


async def run_policies(
    validated: Sequence[ValidatedPolicy],
    phase: str,
    context: EvaluationContext,
    on_policy: Optional[OnPolicyFn] = None,
) -> PoliciesContext:
    """
    phase: precheck | evaluate. An absent phase counts as evaluated with no allowed entry.
    on_policy(package_name, outcome) is called after each policy that ran; it may be async.
    """
    evaluated: List[str] = []
    allowed: Dict[str, AllowedPolicy] = {}
    for vp in validated:
        runtime = PolicyRuntime(vp.policy)
        if phase == "precheck":
            outcome = await runtime.run_precheck(vp.tool_policy_params, vp.user_params, context)
        else:
            outcome = await runtime.run_evaluate(vp.tool_policy_params, vp.user_params, context)
        evaluated.append(vp.package_name)
        if outcome is None:
            continue
        if on_policy is not None:
            cb = on_policy(vp.package_name, outcome)
            if inspect.isawaitable(cb):
                await cb
        allow_schema, deny_schema = vp.policy.phase_schemas(phase)
        if not outcome.allow:
            log.info("policy denied policy=%s phase=%s error=%s", vp.package_name, phase, outcome.error)
            return PoliciesContext(
                allow=False,
                evaluated_policies=evaluated,
                allowed_policies=allowed,
                denied_policy=DeniedPolicy(
                    package_name=vp.package_name,
                    result=deny_schema.dump(outcome.result) if outcome.has_result else None,
                    error=outcome.error,
                ),
            )
        allowed[vp.package_name] = AllowedPolicy(
            result=allow_schema.dump(outcome.result) if outcome.has_result else None
        )
    return PoliciesContext(allow=True, evaluated_policies=evaluated, allowed_policies=allowed)
