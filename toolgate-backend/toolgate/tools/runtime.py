"""
ToolRuntime: a tool's precheck/execute wrapped with input/output validation.
No policy logic lives here; the client (and the executor-side handler) evaluate policies.
"""
import logging
from typing import Any, Optional

from toolgate.errors import ContractError
from toolgate.policies.runtime import call_phase
from toolgate.results import ERROR_KIND_RUNTIME, TOOL_RESPONSE_TYPES, ToolFailureNoResult, ToolResponse
from toolgate.tools.context import EvaluationContext
from toolgate.tools.protocol import CommitFn, Tool, ToolPhaseContext
from toolgate.validation import schema_for_tool_result, validate_or_fail

log = logging.getLogger(__name__)


class ToolRuntime:
    def __init__(self, tool: Tool) -> None:
        self.tool = tool

    async def run_precheck(self, tool_params: Any, context: EvaluationContext) -> Optional[ToolResponse]:
        """None when the tool declares no precheck."""
        if not self.tool.has_precheck():
            return None
        return await self._run_phase("precheck", tool_params, context, None)

    async def run_execute(
        self, tool_params: Any, context: EvaluationContext, commit_fn: Optional[CommitFn] = None
    ) -> ToolResponse:
        return await self._run_phase("execute", tool_params, context, commit_fn)

    def validate_params(self, tool_params: Any, phase: str = "execute"):
        """(ok, parsed | ToolFailureNoResult)."""
        return validate_or_fail(tool_params, self.tool.schemas["tool_params_schema"], phase, "input")

    async def _run_phase(
        self, phase: str, tool_params: Any, context: EvaluationContext, commit_fn: Optional[CommitFn]
    ) -> ToolResponse:
        tool = self.tool
        ok, parsed = self.validate_params(tool_params, phase)
        if not ok:
            return parsed.with_context(context)
        success_schema, fail_schema = tool.phase_schemas(phase)
        ctx = ToolPhaseContext(context, success_schema, fail_schema, commit_fn)
        try:
            response = await call_phase(getattr(tool, phase), parsed, ctx)
        except ContractError:
            raise
        except Exception as e:
            log.warning("tool phase raised tool=%s phase=%s error=%s", tool.package_name, phase, e)
            return ToolFailureNoResult(
                message=f"{tool.package_name} {phase} failed: {e}", context=context, error_kind=ERROR_KIND_RUNTIME
            )
        if not isinstance(response, TOOL_RESPONSE_TYPES):
            return ToolFailureNoResult(
                message=f"{tool.package_name} {phase} returned {type(response).__name__}, expected succeed or fail",
                context=context,
                error_kind=ERROR_KIND_RUNTIME,
            )
        schema = schema_for_tool_result(response, success_schema, fail_schema)
        ok, result = validate_or_fail(response.result, schema, phase, "output")
        if not ok:
            return result.with_context(context)
        if response.has_result:
            return type(response)(result=result, message=response.message, context=context)
        return response.with_context(context)
