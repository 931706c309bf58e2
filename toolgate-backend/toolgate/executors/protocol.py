"""
Remote executor as seen by the client: submit a code reference plus params, get back
{success, response}. response is the dispatch envelope (mapping or JSON text) or an error string.
Transport failures raise ExecutorError; the client turns them into failure responses.
"""
from dataclasses import dataclass
from typing import Any, Dict, Protocol


@dataclass(frozen=True)
class DispatchResult:
    success: bool
    response: Any = None


class RemoteExecutor(Protocol):
    async def dispatch(self, code_reference: str, js_params: Dict[str, Any]) -> DispatchResult:
        ...
