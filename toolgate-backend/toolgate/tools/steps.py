"""
Default handler steps: validate → evaluate policies → execute → postprocess.
"""
from typing import Any, List, Optional

from toolgate.errors import RegistryError
from toolgate.policies.runner import resolve_configured_policies, run_policies
from toolgate.policies.runtime import PolicyRuntime
from toolgate.registry.protocol import DelegationResolver
from toolgate.results import PolicyDenyNoResult, ToolFailureNoResult, ToolSuccessNoResult
from toolgate.tools.pipeline import HandlerState, Step, StepOutput
from toolgate.tools.protocol import Tool
from toolgate.tools.runtime import ToolRuntime


class ValidateStep(Step):
    """Parse tool params against the tool's schema."""

    name = "validate"

    async def run(self, state: HandlerState, prev_output: Optional[StepOutput] = None) -> StepOutput:
        ok, parsed = ToolRuntime(state.tool).validate_params(state.raw_params, "execute")
        if not ok:
            return parsed.with_context(state.context)
        state.params = parsed
        return ToolSuccessNoResult(context=state.context)


class EvaluatePoliciesStep(Step):
    """
    Authoritative policy evaluation on the executor side. Re-resolves the configured policies,
    runs evaluate, and binds commit hooks for the policies that allowed.
    """

    name = "evaluate"

    def __init__(self, resolver: DelegationResolver):
        self._resolver = resolver

    async def run(self, state: HandlerState, prev_output: Optional[StepOutput] = None) -> StepOutput:
        tool, ctx = state.tool, state.context
        delegator = ctx.delegation.delegator
        if delegator is None:
            return ToolFailureNoResult(message="context has no delegator", context=ctx)
        try:
            found = await self._resolver.get_policies_and_app_version(
                ctx.delegation.delegatee_address, delegator, tool.ipfs_cid
            )
            validated = resolve_configured_policies(tool, found.policies, state.params)
        except RegistryError as e:
            return ToolFailureNoResult(message=str(e), context=ctx)
        ctx = ctx.with_app(found.app_id, found.app_version)
        policies_context = await run_policies(validated, "evaluate", ctx)
        ctx = ctx.with_policies(policies_context)
        state.context = ctx
        if not policies_context.allow:
            denied = policies_context.denied_policy
            return ToolFailureNoResult(message=f"Policy evaluation denied by {denied.package_name}", context=ctx)
        state.commit_fn = _commit_hooks(tool, state)
        return ToolSuccessNoResult(context=ctx)


def _commit_hooks(tool: Tool, state: HandlerState):
    async def commit(package_name: str, params: Any = None):
        policies_context = state.context.policies_context
        sp = tool.supported_policy(package_name)
        if sp is None or policies_context is None or sp.package_name not in policies_context.allowed_policies:
            return PolicyDenyNoResult(error=f"policy {package_name} did not allow this execution")
        outcome = await PolicyRuntime(sp.policy).run_commit(params, state.context)
        if outcome is None:
            return PolicyDenyNoResult(error=f"policy {package_name} has no commit phase")
        return outcome

    return commit


class ExecuteStep(Step):
    """Run the tool body with commit hooks bound."""

    name = "execute"

    async def run(self, state: HandlerState, prev_output: Optional[StepOutput] = None) -> StepOutput:
        runtime = ToolRuntime(state.tool)
        return await runtime.run_execute(state.params, state.context, state.commit_fn)


class PostprocessStep(Step):
    """Attach the final context; never changes tag or result."""

    name = "postprocess"

    async def run(self, state: HandlerState, prev_output: Optional[StepOutput] = None) -> StepOutput:
        if prev_output is None:
            return ToolFailureNoResult(message="nothing to postprocess", context=state.context)
        return prev_output.with_context(state.context)


def default_pipeline_steps(tool: Tool, resolver: DelegationResolver) -> List[Step]:
    """Default steps when the tool does not define custom steps."""
    return [
        ValidateStep(),
        EvaluatePoliciesStep(resolver),
        ExecuteStep(),
        PostprocessStep(),
    ]
