"""
ToolHandler: the executor side of a dispatch. Takes {toolParams, context} for a tool content id,
runs the handler pipeline and returns the dispatch envelope {toolExecutionResult, toolContext}.
"""
import logging
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from toolgate.registry.protocol import DelegationResolver
from toolgate.results import ToolFailureNoResult, response_to_dict
from toolgate.tools.context import EvaluationContext
from toolgate.tools.pipeline import HandlerState, run_pipeline
from toolgate.tools.protocol import Tool
from toolgate.tools.steps import default_pipeline_steps

log = logging.getLogger(__name__)


def _envelope(response, context: Optional[EvaluationContext]) -> Dict[str, Any]:
    result = response_to_dict(response)
    result.pop("context", None)
    return {
        "toolExecutionResult": result,
        "toolContext": context.to_wire() if context is not None else None,
    }


class ToolHandler:
    def __init__(self, resolver: DelegationResolver, get_tool_fn: Callable[[str], Optional[Tool]]):
        self._resolver = resolver
        self._get_tool = get_tool_fn

    async def handle(self, code_reference: str, js_params: Dict[str, Any]) -> Dict[str, Any]:
        tool = self._get_tool(code_reference)
        if tool is None:
            return _envelope(ToolFailureNoResult(message=f"unknown tool {code_reference}"), None)
        js_params = js_params or {}
        try:
            context = EvaluationContext.from_wire(js_params.get("context"))
        except ValidationError as e:
            return _envelope(ToolFailureNoResult(message=f"invalid dispatch context: {e.error_count()} errors"), None)
        state = HandlerState(tool=tool, raw_params=js_params.get("toolParams"), context=context)
        steps = tool.steps if tool.steps is not None else default_pipeline_steps(tool, self._resolver)
        response = await run_pipeline(steps, state)
        log.info("handled tool=%s success=%s", tool.package_name, response.success)
        return _envelope(response, state.context)
