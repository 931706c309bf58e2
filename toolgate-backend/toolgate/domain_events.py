"""
Append-only invocation event log. Never raises; failures are logged and swallowed.
Used by ToolClient through append_event_fn (see make_append_event).
"""
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy import text

from toolgate.ops.notify import ALERT_EVENTS, alert_invocation_event

log = logging.getLogger(__name__)

# Max payload size to store (bytes, approximate)
PAYLOAD_MAX_BYTES = 8000


def _trim_payload(payload: Dict[str, Any], max_bytes: int = PAYLOAD_MAX_BYTES) -> Dict[str, Any]:
    """Keep payload under max_bytes: truncate long strings, then collapse nested dicts."""
    if not payload:
        return {}
    out: Dict[str, Any] = {}
    for k, v in payload.items():
        if v is None or isinstance(v, (int, float, bool)):
            out[k] = v
        elif isinstance(v, str):
            out[k] = v if len(v) <= 2000 else v[:2000] + "..."
        elif isinstance(v, dict):
            out[k] = {str(kk): (str(vv)[:200] if isinstance(vv, str) else vv) for kk, vv in list(v.items())[:20]}
        else:
            out[k] = str(v)[:500]
    raw = json.dumps(out, ensure_ascii=False, default=str)
    if len(raw.encode("utf-8")) <= max_bytes:
        return out
    for k in list(out.keys()):
        if isinstance(out[k], dict):
            out[k] = {"_truncated": True, "keys": list(out[k].keys())[:5]}
        elif isinstance(out[k], str) and len(out[k]) > 500:
            out[k] = out[k][:500] + "..."
    return out


async def append_invocation_event(
    engine: Any,
    invocation_id: str,
    tool_ipfs_cid: str,
    event_type: str,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    """Append one event. Never raises."""
    try:
        pl_json = json.dumps(_trim_payload(payload or {}), ensure_ascii=False, default=str)
        async with engine.begin() as conn:
            await conn.execute(
                text(
                    """
                    INSERT INTO invocation_events (invocation_id, tool_ipfs_cid, event_type, payload)
                    VALUES (:invocation_id, :tool_ipfs_cid, :event_type, :payload)
                    """
                ),
                {
                    "invocation_id": invocation_id,
                    "tool_ipfs_cid": tool_ipfs_cid,
                    "event_type": event_type,
                    "payload": pl_json,
                },
            )
    except Exception as e:
        log.warning("append invocation event failed event=%s error=%s", event_type, e)
    _maybe_notify_telegram(invocation_id, tool_ipfs_cid, event_type, payload or {})


def _maybe_notify_telegram(invocation_id: str, tool_ipfs_cid: str, event_type: str, payload: Dict[str, Any]) -> None:
    """Critical events go to Telegram (throttled). Never raises."""
    if event_type not in ALERT_EVENTS:
        return
    try:
        alert_invocation_event(invocation_id, tool_ipfs_cid, event_type, payload)
    except Exception as e:
        log.warning("notify telegram failed event=%s error=%s", event_type, e)


def make_append_event(engine: Any) -> Callable[[str, str, str, Dict[str, Any]], Awaitable[None]]:
    """Bind an engine for ToolClient(append_event_fn=...)."""

    async def append(invocation_id: str, tool_ipfs_cid: str, event_type: str, payload: Dict[str, Any]) -> None:
        await append_invocation_event(engine, invocation_id, tool_ipfs_cid, event_type, payload)

    return append
