import asyncio
import hashlib
import hmac
import json
import logging
import urllib.error
import urllib.request
from typing import Any, Dict

from toolgate.errors import ExecutorError
from toolgate.executors.protocol import DispatchResult
from toolgate.executors.session import ExecutorSessionManager

log = logging.getLogger(__name__)

DISPATCH_PATH = "/v1/execute"


class HttpRemoteExecutor:
    """
    Remote executor over signed HTTP. One POST per dispatch, no retries.
    Body: {ipfsId, jsParams, sessionSig}; X-Toolgate-Signature = hmac-sha256(sessionSig, body).
    Response: {success, response} JSON.
    """

    def __init__(self, base_url: str, sessions: ExecutorSessionManager, timeout_sec: float = 30.0) -> None:
        self.base = (base_url or "").rstrip("/")
        if not self.base:
            raise ExecutorError("executor base url missing")
        self.sessions = sessions
        self.timeout_sec = timeout_sec

    def _sign(self, key: str, body: bytes) -> str:
        return hmac.new(key.encode("utf-8"), body, hashlib.sha256).hexdigest()

    def _post(self, payload: Dict[str, Any], session_sig: str, delegatee: str) -> Dict[str, Any]:
        body = json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        req = urllib.request.Request(url=f"{self.base}{DISPATCH_PATH}", data=body, method="POST")
        req.add_header("Content-Type", "application/json")
        req.add_header("X-Toolgate-Delegatee", delegatee)
        req.add_header("X-Toolgate-Signature", self._sign(session_sig, body))
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_sec) as resp:
                raw = resp.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            text = e.read().decode("utf-8", errors="replace")
            raise ExecutorError(f"EXECUTOR_HTTP_{e.code}:{text[:500]}") from e
        except Exception as e:
            raise ExecutorError(f"EXECUTOR_REQ_FAILED:{e}") from e
        try:
            return json.loads(raw) if raw else {}
        except ValueError as e:
            raise ExecutorError(f"EXECUTOR_BAD_BODY:{raw[:200]}") from e

    async def dispatch(self, code_reference: str, js_params: Dict[str, Any]) -> DispatchResult:
        session = self.sessions.current()
        payload = {"ipfsId": code_reference, "jsParams": js_params, "sessionSig": session.session_sig}
        out = await asyncio.to_thread(self._post, payload, session.session_sig, session.delegatee_address)
        if not isinstance(out, dict) or "success" not in out:
            raise ExecutorError(f"EXECUTOR_BAD_BODY:{str(out)[:200]}")
        log.info("dispatched ipfs_id=%s success=%s", code_reference, out.get("success"))
        return DispatchResult(success=out.get("success") is True, response=out.get("response"))
