"""
ToolClient: precheck → (resolve delegation → evaluate policies → tool precheck) and
execute → (resolve → evaluate → dispatch → validate remote result).

Every failure comes back as a tool response carrying a message and the context built so far;
only ContractError (a malformed definition) propagates. Policies are re-resolved and
re-evaluated on every call; nothing is cached between precheck and execute.
Emits append-only events at each transition when append_event_fn is injected.
"""
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from toolgate.errors import ContractError, ProtocolError
from toolgate.executors.protocol import RemoteExecutor
from toolgate.policies.runner import resolve_configured_policies, run_policies
from toolgate.registry.protocol import DelegationResolver
from toolgate.results import (
    ToolResponse,
    ToolSuccessNoResult,
    create_failure,
    create_success,
    failure_no_result,
)
from toolgate.tools.context import Delegation, EvaluationContext
from toolgate.tools.protocol import Tool
from toolgate.tools.runtime import ToolRuntime
from toolgate.validation import preview, parse_dispatch_envelope, schema_for_tool_result, validate_or_fail

log = logging.getLogger(__name__)

AppendEventFn = Callable[[str, str, str, Dict[str, Any]], Awaitable[None]]


class ToolClient:
    def __init__(
        self,
        tool: Tool,
        resolver: DelegationResolver,
        executor: RemoteExecutor,
        delegatee_address: str,
        append_event_fn: Optional[AppendEventFn] = None,
    ):
        self.tool = tool
        self._runtime = ToolRuntime(tool)
        self._resolver = resolver
        self._executor = executor
        self._delegatee = delegatee_address
        self._append_event = append_event_fn

    async def _event(self, invocation_id: str, event_type: str, payload: Dict[str, Any]) -> None:
        if not self._append_event:
            return
        try:
            await self._append_event(invocation_id, self.tool.ipfs_cid, event_type, payload)
        except Exception as e:
            log.warning("append event failed event=%s error=%s", event_type, e)

    def _base_context(self) -> EvaluationContext:
        return EvaluationContext(
            tool_ipfs_cid=self.tool.ipfs_cid,
            delegation=Delegation(delegatee_address=self._delegatee),
        )

    async def _evaluate(
        self,
        invocation_id: str,
        phase: str,
        tool_params: Any,
        delegator_address: str,
        rpc_url: Optional[str],
        context: EvaluationContext,
    ) -> Tuple[EvaluationContext, Optional[ToolResponse]]:
        """
        resolving-delegation → evaluating-policies. Returns (context, None) when allowed,
        (context, failure) when the registry failed or a policy denied.
        """
        try:
            delegator = await self._resolver.get_delegator_info(delegator_address, rpc_url=rpc_url)
            context = context.with_delegator(delegator)
            found = await self._resolver.get_policies_and_app_version(
                self._delegatee, delegator, self.tool.ipfs_cid
            )
            context = context.with_app(found.app_id, found.app_version)
            validated = resolve_configured_policies(self.tool, found.policies, tool_params)
        except ContractError:
            raise
        except Exception as e:
            log.warning("registry resolution failed tool=%s delegator=%s error=%s", self.tool.package_name, delegator_address, e)
            await self._event(invocation_id, "REGISTRY_ERROR", {"phase": phase, "message": str(e)})
            return context, failure_no_result(f"Registry resolution failed: {e}", context)

        async def on_policy(package_name: str, outcome: Any) -> None:
            await self._event(
                invocation_id,
                "POLICY_ALLOW" if outcome.allow else "POLICY_DENY",
                {"phase": phase, "policy": package_name, "error": getattr(outcome, "error", None)},
            )

        policies_context = await run_policies(validated, phase, context, on_policy=on_policy)
        context = context.with_policies(policies_context)
        if not policies_context.allow:
            denied = policies_context.denied_policy
            message = f"Policy {phase} denied by {denied.package_name}"
            if denied.error:
                message = f"{message}: {denied.error}"
            return context, failure_no_result(message, context)
        return context, None

    async def precheck(
        self, tool_params: Any, delegator_address: str, rpc_url: Optional[str] = None
    ) -> ToolResponse:
        """Never dispatches; safe to call repeatedly."""
        invocation_id = str(uuid.uuid4())
        context = self._base_context()
        ok, parsed = self._runtime.validate_params(tool_params, "precheck")
        if not ok:
            await self._event(invocation_id, "VALIDATION_FAIL", {"phase": "precheck", "message": parsed.message})
            return parsed.with_context(context)

        context, failure = await self._evaluate(
            invocation_id, "precheck", parsed, delegator_address, rpc_url, context
        )
        if failure is not None:
            await self._event(invocation_id, "PRECHECK_FAIL", {"message": failure.message})
            return failure

        response = await self._runtime.run_precheck(parsed, context)
        if response is None:
            response = ToolSuccessNoResult(context=context)
        response = response.with_context(context)
        await self._event(
            invocation_id,
            "PRECHECK_OK" if response.success else "PRECHECK_FAIL",
            {"message": response.message},
        )
        return response

    async def execute(self, tool_params: Any, delegator_address: str) -> ToolResponse:
        invocation_id = str(uuid.uuid4())
        tool = self.tool
        context = self._base_context()
        ok, parsed = self._runtime.validate_params(tool_params, "execute")
        if not ok:
            await self._event(invocation_id, "VALIDATION_FAIL", {"phase": "execute", "message": parsed.message})
            return parsed.with_context(context)

        context, failure = await self._evaluate(invocation_id, "evaluate", parsed, delegator_address, None, context)
        if failure is not None:
            return failure

        # dispatching
        js_params = {
            "toolParams": tool.schemas["tool_params_schema"].dump(parsed),
            "context": context.to_wire(),
        }
        try:
            dispatched = await self._executor.dispatch(tool.ipfs_cid, js_params)
        except Exception as e:
            log.warning("dispatch failed tool=%s error=%s", tool.package_name, e)
            await self._event(invocation_id, "DISPATCH_ERROR", {"message": str(e)})
            return failure_no_result(f"Remote dispatch failed: {e}", context)
        await self._event(invocation_id, "DISPATCHED", {"success": dispatched.success})

        # validating-remote-result
        try:
            if not dispatched.success:
                raise ProtocolError(f"Remote executor reported failure: {preview(dispatched.response)}")
            envelope = parse_dispatch_envelope(dispatched.response)
            if envelope.tool_context is not None:
                context = EvaluationContext.from_wire(envelope.tool_context)
        except ProtocolError as e:
            await self._event(invocation_id, "PROTOCOL_ERROR", {"message": e.message})
            return failure_no_result(e.message, context)
        except ValueError as e:
            # pydantic ValidationError on toolContext
            await self._event(invocation_id, "PROTOCOL_ERROR", {"message": str(e)})
            return failure_no_result(f"Remote tool returned an invalid toolContext: {e}", context)

        remote = envelope.tool_execution_result
        if not remote.success and not remote.has_result:
            # runtime, schema or executor-side deny: message is passed through as-is
            response = failure_no_result(remote.error or "", context, error_kind=remote.error_kind)
            await self._event(
                invocation_id, "TOOL_FAIL", {"message": response.message, "error_kind": remote.error_kind}
            )
            return response
        success_schema, fail_schema = tool.phase_schemas("execute")
        schema = schema_for_tool_result(remote, success_schema, fail_schema)
        ok, result = validate_or_fail(remote.result, schema, "execute", "output")
        if not ok:
            await self._event(invocation_id, "TOOL_FAIL", {"message": result.message})
            return result.with_context(context)
        if remote.success:
            response = create_success(result, schema=schema, message=remote.error, context=context)
        else:
            response = create_failure(result, schema=schema, message=remote.error, context=context)
        await self._event(
            invocation_id,
            "TOOL_OK" if response.success else "TOOL_FAIL",
            {"message": response.message},
        )
        return response
