"""
Telegram alerts for critical invocation events (policy deny, protocol and dispatch errors).
Off unless TELEGRAM_NOTIFY_ENABLED=1. Throttled per (event, tool, policy). Never raises.
"""
import logging
import os
import time
from typing import Any, Dict, Optional, Tuple

import requests

log = logging.getLogger(__name__)

ALERT_EVENTS = frozenset({"POLICY_DENY", "PROTOCOL_ERROR", "DISPATCH_ERROR"})
TELEGRAM_API = "https://api.telegram.org"

# throttle_key -> last sent ts
_last_sent: Dict[str, float] = {}


def _telegram_target() -> Optional[Tuple[str, str]]:
    if (os.getenv("TELEGRAM_NOTIFY_ENABLED") or "").strip() != "1":
        return None
    token = (os.getenv("TELEGRAM_BOT_TOKEN") or "").strip()
    chat_id = (os.getenv("TELEGRAM_CHAT_ID") or "").strip()
    if not token or not chat_id:
        return None
    return token, chat_id


def _throttle_window() -> float:
    try:
        return float(os.getenv("TELEGRAM_THROTTLE_SECONDS", "60"))
    except ValueError:
        return 60.0


def format_alert(invocation_id: str, tool_ipfs_cid: str, event_type: str, payload: Dict[str, Any]) -> str:
    policy = payload.get("policy") or "-"
    detail = payload.get("message") or payload.get("error") or ""
    return f"[toolgate {event_type}] tool={tool_ipfs_cid} policy={policy} invocation={invocation_id}\n{detail}"[:500]


def send_telegram(text: str, throttle_key: str = "default") -> bool:
    """True when the message was accepted by Telegram."""
    target = _telegram_target()
    if target is None:
        return False
    now = time.time()
    if now - _last_sent.get(throttle_key, 0.0) < _throttle_window():
        return False
    token, chat_id = target
    try:
        r = requests.post(
            f"{TELEGRAM_API}/bot{token}/sendMessage",
            json={"chat_id": chat_id, "text": text[:4000]},
            timeout=10,
        )
    except requests.RequestException as e:
        log.warning("telegram send error key=%s error=%s", throttle_key, e)
        return False
    if r.status_code != 200:
        log.warning("telegram send failed key=%s status=%s body=%s", throttle_key, r.status_code, r.text[:200])
        return False
    _last_sent[throttle_key] = now
    return True


def alert_invocation_event(
    invocation_id: str, tool_ipfs_cid: str, event_type: str, payload: Dict[str, Any]
) -> bool:
    """Send an alert for ALERT_EVENTS; other events are ignored."""
    if event_type not in ALERT_EVENTS:
        return False
    throttle_key = f"{event_type}:{tool_ipfs_cid}:{payload.get('policy') or ''}"
    return send_telegram(format_alert(invocation_id, tool_ipfs_cid, event_type, payload), throttle_key)
