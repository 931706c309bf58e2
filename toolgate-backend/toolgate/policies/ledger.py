"""
Policy ledger: timestamped amounts per key, read over a rolling window.
Redis (sorted set per key, score = ts) when REDIS_URL is set; in-memory otherwise.
"""
import threading
import time
import uuid
from typing import Dict, List, Optional, Protocol, Tuple

import redis

# entries older than this are dropped on write
RETAIN_SECONDS = 7 * 24 * 3600


def _k(key: str) -> str:
    return f"toolgate:ledger:{key}"


class PolicyLedger(Protocol):
    def entries(self, key: str, window_sec: float, now: Optional[float] = None) -> List[Tuple[float, float]]:
        ...

    def record(self, key: str, amount: float = 1.0, now: Optional[float] = None) -> None:
        ...


def count(ledger: PolicyLedger, key: str, window_sec: float, now: Optional[float] = None) -> int:
    return len(ledger.entries(key, window_sec, now))


def total(ledger: PolicyLedger, key: str, window_sec: float, now: Optional[float] = None) -> float:
    return round(sum(amount for _, amount in ledger.entries(key, window_sec, now)), 8)


def oldest_ts(ledger: PolicyLedger, key: str, window_sec: float, now: Optional[float] = None) -> Optional[float]:
    rows = ledger.entries(key, window_sec, now)
    return rows[0][0] if rows else None


class MemoryPolicyLedger:
    def __init__(self) -> None:
        self._rows: Dict[str, List[Tuple[float, float]]] = {}
        self._lock = threading.Lock()

    def entries(self, key: str, window_sec: float, now: Optional[float] = None) -> List[Tuple[float, float]]:
        now = time.time() if now is None else now
        with self._lock:
            rows = self._rows.get(key, [])
            return [(ts, amount) for ts, amount in rows if ts > now - window_sec and ts <= now]

    def record(self, key: str, amount: float = 1.0, now: Optional[float] = None) -> None:
        now = time.time() if now is None else now
        with self._lock:
            rows = [r for r in self._rows.get(key, []) if r[0] > now - RETAIN_SECONDS]
            rows.append((now, float(amount)))
            rows.sort(key=lambda r: r[0])
            self._rows[key] = rows


class RedisPolicyLedger:
    """Members are "<ts>:<amount>:<nonce>" so equal amounts at the same ts stay distinct."""

    def __init__(self, client: "redis.Redis") -> None:
        self._r = client

    @classmethod
    def from_url(cls, url: str) -> "RedisPolicyLedger":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def entries(self, key: str, window_sec: float, now: Optional[float] = None) -> List[Tuple[float, float]]:
        now = time.time() if now is None else now
        rows = self._r.zrangebyscore(_k(key), f"({now - window_sec}", now, withscores=True)
        out = []
        for member, score in rows:
            try:
                amount = float(str(member).split(":")[1])
            except (IndexError, ValueError):
                amount = 1.0
            out.append((float(score), amount))
        return out

    def record(self, key: str, amount: float = 1.0, now: Optional[float] = None) -> None:
        now = time.time() if now is None else now
        k = _k(key)
        member = f"{now}:{float(amount)}:{uuid.uuid4().hex[:8]}"
        pipe = self._r.pipeline()
        pipe.zremrangebyscore(k, "-inf", now - RETAIN_SECONDS)
        pipe.zadd(k, {member: now})
        pipe.expire(k, RETAIN_SECONDS)
        pipe.execute()


_ledger: Optional[PolicyLedger] = None


def set_ledger(ledger: Optional[PolicyLedger]) -> None:
    global _ledger
    _ledger = ledger


def get_ledger() -> PolicyLedger:
    """Process-wide ledger; in-memory until init_ledger/set_ledger picks another."""
    global _ledger
    if _ledger is None:
        _ledger = MemoryPolicyLedger()
    return _ledger


def init_ledger(redis_url: str = "") -> PolicyLedger:
    ledger: PolicyLedger = RedisPolicyLedger.from_url(redis_url) if redis_url else MemoryPolicyLedger()
    set_ledger(ledger)
    return ledger
