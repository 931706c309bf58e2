"""
PolicyRuntime: one policy's phases wrapped with input/output validation.
Deny is the only outcome of a fault: exceptions, non-outcome returns and invalid results all deny.
"""
import inspect
import logging
from typing import Any, Optional

from toolgate.errors import ContractError
from toolgate.policies.protocol import CommitParams, Policy, PolicyParams, PolicyPhaseContext
from toolgate.results import POLICY_OUTCOME_TYPES, PolicyDenyNoResult, PolicyOutcome
from toolgate.tools.context import EvaluationContext
from toolgate.validation import schema_for_policy_result, validate_or_deny

log = logging.getLogger(__name__)


async def call_phase(fn: Any, *args: Any) -> Any:
    """Call a sync or async phase function."""
    out = fn(*args)
    if inspect.isawaitable(out):
        out = await out
    return out


class PolicyRuntime:
    def __init__(self, policy: Policy) -> None:
        self.policy = policy

    @property
    def package_name(self) -> str:
        return self.policy.package_name

    async def run_precheck(
        self, tool_params: Any, user_params: Any, context: EvaluationContext
    ) -> Optional[PolicyOutcome]:
        return await self._run_phase("precheck", tool_params, user_params, context)

    async def run_evaluate(
        self, tool_params: Any, user_params: Any, context: EvaluationContext
    ) -> Optional[PolicyOutcome]:
        return await self._run_phase("evaluate", tool_params, user_params, context)

    async def run_commit(self, commit_params: Any, context: EvaluationContext) -> Optional[PolicyOutcome]:
        """None when the policy has no commit phase."""
        policy = self.policy
        if not policy.has_phase("commit"):
            return None
        ok, parsed = validate_or_deny(commit_params, policy.schemas["commit_params_schema"], "commit", "input")
        if not ok:
            return parsed
        return await self._invoke("commit", CommitParams(params=parsed), context)

    async def _run_phase(
        self, phase: str, tool_params: Any, user_params: Any, context: EvaluationContext
    ) -> Optional[PolicyOutcome]:
        policy = self.policy
        if not policy.has_phase(phase):
            return None
        ok, parsed_tool = validate_or_deny(tool_params, policy.schemas["tool_params_schema"], phase, "input")
        if not ok:
            return parsed_tool
        ok, parsed_user = validate_or_deny(user_params, policy.schemas["user_params_schema"], phase, "input")
        if not ok:
            return parsed_user
        return await self._invoke(phase, PolicyParams(tool_params=parsed_tool, user_params=parsed_user), context)

    async def _invoke(self, phase: str, params: Any, context: EvaluationContext) -> PolicyOutcome:
        policy = self.policy
        allow_schema, deny_schema = policy.phase_schemas(phase)
        ctx = PolicyPhaseContext(context, allow_schema, deny_schema)
        try:
            outcome = await call_phase(getattr(policy, phase), params, ctx)
        except ContractError:
            raise
        except Exception as e:
            log.warning("policy phase raised policy=%s phase=%s error=%s", policy.package_name, phase, e)
            return PolicyDenyNoResult(error=f"{policy.package_name} {phase} failed: {e}")
        if not isinstance(outcome, POLICY_OUTCOME_TYPES):
            return PolicyDenyNoResult(
                error=f"{policy.package_name} {phase} returned {type(outcome).__name__}, expected allow or deny"
            )
        schema = schema_for_policy_result(outcome, allow_schema, deny_schema)
        ok, parsed = validate_or_deny(outcome.result, schema, phase, "output")
        if not ok:
            return parsed
        if not outcome.has_result:
            return outcome
        # re-wrap with the parsed value; tag and error are kept
        if outcome.allow:
            return type(outcome)(result=parsed)
        return type(outcome)(result=parsed, error=outcome.error)
