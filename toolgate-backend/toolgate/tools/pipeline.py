"""
Handler pipeline: run a tool invocation through steps (validate → evaluate → execute → postprocess).
StepOutput is a ToolResponse; any step returning a failure stops the pipeline.
"""
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from toolgate.results import ERROR_KIND_RUNTIME, ToolFailureNoResult, ToolResponse
from toolgate.tools.context import EvaluationContext
from toolgate.tools.protocol import CommitFn, Tool

log = logging.getLogger(__name__)

StepOutput = ToolResponse


@dataclass
class HandlerState:
    """Mutable per-invocation state shared by the steps of one handler run."""

    tool: Tool
    raw_params: Any
    context: EvaluationContext
    params: Any = None
    commit_fn: Optional[CommitFn] = None


class Step:
    """Step protocol: name, async run(state, prev_output) -> ToolResponse."""

    name: str = ""

    async def run(self, state: HandlerState, prev_output: Optional[StepOutput] = None) -> StepOutput:
        """prev_output is the output of the previous step (None for first)."""
        raise NotImplementedError


async def run_pipeline(steps: List[Step], state: HandlerState) -> StepOutput:
    """
    Run steps in order. On first failure return immediately.
    Exceptions → failure without result naming the step.
    """
    out: Optional[StepOutput] = None
    for step in steps:
        try:
            out = await step.run(state, out)
        except Exception as e:
            log.warning("handler step raised step=%s tool=%s error=%s", step.name, state.tool.package_name, e)
            return ToolFailureNoResult(
                message=f"step {getattr(step, 'name', '?')} raised: {e}",
                context=state.context,
                error_kind=ERROR_KIND_RUNTIME,
            )
        if out is None:
            return ToolFailureNoResult(message=f"step {step.name} returned no output", context=state.context)
        if not out.success:
            return out
    return out or ToolFailureNoResult(message="no steps", context=state.context)
