"""
Process wiring: settings → engine, resolver, executor (local or remote), session manager,
event log. One Services per app; the API builds a ToolClient per request from it.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional

from toolgate.client import AppendEventFn, ToolClient
from toolgate.config import Settings
from toolgate.db import make_engine
from toolgate.domain_events import make_append_event
from toolgate.executors.http_executor import HttpRemoteExecutor
from toolgate.executors.local import InProcessExecutor
from toolgate.executors.protocol import RemoteExecutor
from toolgate.executors.session import ExecutorSessionManager
from toolgate.policies.ledger import init_ledger
from toolgate.policies.registry import init_policies
from toolgate.registry.protocol import DelegationResolver
from toolgate.registry.sql import SqlDelegationResolver
from toolgate.tools.handler import ToolHandler
from toolgate.tools.protocol import Tool
from toolgate.tools.registry import get_tool, init_tools

log = logging.getLogger(__name__)


@dataclass
class Services:
    resolver: DelegationResolver
    executor: RemoteExecutor
    delegatee_address: str
    execution_mode: str = "LOCAL"
    sessions: Optional[ExecutorSessionManager] = None
    append_event_fn: Optional[AppendEventFn] = None
    engine: Any = None

    def client_for(self, tool: Tool) -> ToolClient:
        return ToolClient(
            tool,
            self.resolver,
            self.executor,
            self.delegatee_address,
            append_event_fn=self.append_event_fn,
        )

    async def start(self) -> None:
        if self.sessions is not None:
            await self.sessions.start()

    async def stop(self) -> None:
        if self.sessions is not None:
            await self.sessions.stop()
        if self.engine is not None:
            await self.engine.dispose()


def build_services(settings: Settings) -> Services:
    init_policies()
    init_tools()
    init_ledger(settings.redis_url)
    engine = make_engine(settings.database_url)
    resolver = SqlDelegationResolver(engine)
    sessions: Optional[ExecutorSessionManager] = None
    if settings.is_remote:
        if not settings.delegatee_secret:
            log.warning("TOOLGATE_DELEGATEE_SECRET is empty; executor sessions are signed with an empty key")
        sessions = ExecutorSessionManager(
            settings.delegatee_address,
            settings.delegatee_secret,
            ttl_sec=settings.session_ttl_sec,
            refresh_sec=settings.session_refresh_sec,
        )
        executor: RemoteExecutor = HttpRemoteExecutor(settings.executor_url, sessions, settings.executor_timeout_sec)
    else:
        executor = InProcessExecutor(ToolHandler(resolver, get_tool))
    log.info("services built execution_mode=%s events=%s", settings.execution_mode, settings.events_enabled)
    return Services(
        resolver=resolver,
        executor=executor,
        delegatee_address=settings.delegatee_address,
        execution_mode=settings.execution_mode,
        sessions=sessions,
        append_event_fn=make_append_event(engine) if settings.events_enabled else None,
        engine=engine,
    )
