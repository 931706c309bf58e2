"""
In-process executor (EXECUTION_MODE=LOCAL): runs the tool handler in this process and returns the
envelope as JSON text, the way the remote network returns it.
"""
import json
import logging
from typing import Any, Dict

from toolgate.executors.protocol import DispatchResult
from toolgate.tools.handler import ToolHandler

log = logging.getLogger(__name__)


class InProcessExecutor:
    def __init__(self, handler: ToolHandler):
        self._handler = handler

    async def dispatch(self, code_reference: str, js_params: Dict[str, Any]) -> DispatchResult:
        try:
            envelope = await self._handler.handle(code_reference, js_params)
        except Exception as e:
            log.warning("in-process handler raised ipfs_id=%s error=%s", code_reference, e)
            return DispatchResult(success=False, response=str(e))
        return DispatchResult(success=True, response=json.dumps(envelope, ensure_ascii=False, default=str))
