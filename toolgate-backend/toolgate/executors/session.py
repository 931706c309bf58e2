"""
Delegatee session for the remote executor. One manager per process, injected into the executor.
The session object is immutable; refresh builds a new one and swaps the reference, so a
request that already read current() keeps a complete session.
"""
import asyncio
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutorSession:
    delegatee_address: str
    issued_at: float
    expires_at: float
    session_sig: str

    def expires_within(self, seconds: float, now: float) -> bool:
        return self.expires_at - now <= seconds


def sign_session(secret: str, delegatee_address: str, issued_at: float, expires_at: float) -> str:
    msg = f"{delegatee_address.lower()}:{int(issued_at)}:{int(expires_at)}"
    return hmac.new(secret.encode("utf-8"), msg.encode("utf-8"), hashlib.sha256).hexdigest()


class ExecutorSessionManager:
    """
    start() creates the first session and a background refresh task; stop() cancels it.
    current() never waits on the task: it creates a session on demand when none is valid.
    """

    def __init__(
        self,
        delegatee_address: str,
        secret: str,
        ttl_sec: float = 600.0,
        refresh_sec: float = 60.0,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.delegatee_address = delegatee_address
        self._secret = secret
        self.ttl_sec = max(1.0, float(ttl_sec))
        self.refresh_sec = max(0.05, float(refresh_sec))
        self._clock = clock or time.time
        self._session: Optional[ExecutorSession] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _create(self) -> ExecutorSession:
        now = self._clock()
        expires = now + self.ttl_sec
        return ExecutorSession(
            delegatee_address=self.delegatee_address,
            issued_at=now,
            expires_at=expires,
            session_sig=sign_session(self._secret, self.delegatee_address, now, expires),
        )

    def _needs_refresh(self, session: Optional[ExecutorSession]) -> bool:
        if session is None:
            return True
        # less than two refresh intervals left
        return session.expires_within(self.refresh_sec * 2, self._clock())

    def refresh(self) -> ExecutorSession:
        session = self._create()
        self._session = session
        log.info("executor session refreshed delegatee=%s expires_at=%s", self.delegatee_address, int(session.expires_at))
        return session

    def current(self) -> ExecutorSession:
        session = self._session
        if self._needs_refresh(session):
            session = self.refresh()
        return session

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.refresh_sec)
            try:
                if self._needs_refresh(self._session):
                    self.refresh()
            except Exception as e:
                log.warning("executor session refresh failed: %s", e)

    async def start(self) -> None:
        if self.running:
            return
        self.refresh()
        self._task = asyncio.create_task(self._refresh_loop())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
