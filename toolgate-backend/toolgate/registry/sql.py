"""
DelegationResolver over the registry tables (SQLAlchemy async engine, raw text() queries).
Not found / not permitted raises RegistryError; driver errors propagate and the client
reports them as registry failures.
"""
import logging
from typing import Any, Optional

from sqlalchemy import text

from toolgate.errors import RegistryError
from toolgate.registry.protocol import ConfiguredPolicy, PoliciesAndApp
from toolgate.tools.context import DelegatorInfo

log = logging.getLogger(__name__)


def _addr(value: str) -> str:
    return (value or "").strip().lower()


class SqlDelegationResolver:
    def __init__(self, engine: Any):
        self._engine = engine

    async def get_delegator_info(self, delegator_address: str, rpc_url: Optional[str] = None) -> DelegatorInfo:
        address = _addr(delegator_address)
        if not address:
            raise RegistryError("delegator address is empty")
        if rpc_url:
            log.debug("rpc_url ignored by sql resolver delegator=%s", address)
        async with self._engine.connect() as conn:
            r = await conn.execute(
                text(
                    """
                    SELECT eth_address, token_id, public_key FROM delegators
                    WHERE eth_address = :address
                    """
                ),
                {"address": address},
            )
            row = r.mappings().first()
        if not row:
            raise RegistryError(f"delegator {address} not found")
        return DelegatorInfo(
            token_id=str(row["token_id"]),
            eth_address=row["eth_address"],
            public_key=row["public_key"],
        )

    async def get_policies_and_app_version(
        self, delegatee_address: str, delegator: DelegatorInfo, tool_ipfs_cid: str
    ) -> PoliciesAndApp:
        delegatee = _addr(delegatee_address)
        delegator_address = _addr(delegator.eth_address)
        async with self._engine.connect() as conn:
            r = await conn.execute(
                text("SELECT app_id FROM app_delegatees WHERE delegatee_address = :delegatee"),
                {"delegatee": delegatee},
            )
            row = r.mappings().first()
            if not row:
                raise RegistryError(f"delegatee {delegatee} is not registered to any app")
            app_id = int(row["app_id"])

            r = await conn.execute(
                text(
                    """
                    SELECT app_version FROM app_permissions
                    WHERE app_id = :app_id AND delegator_address = :delegator AND enabled = :enabled
                    """
                ),
                {"app_id": app_id, "delegator": delegator_address, "enabled": True},
            )
            row = r.mappings().first()
            if not row:
                raise RegistryError(f"delegator {delegator_address} has not permitted app {app_id}")
            app_version = int(row["app_version"])

            r = await conn.execute(
                text(
                    """
                    SELECT 1 FROM app_tools
                    WHERE app_id = :app_id AND app_version = :app_version AND tool_ipfs_cid = :tool
                    """
                ),
                {"app_id": app_id, "app_version": app_version, "tool": tool_ipfs_cid},
            )
            if not r.first():
                raise RegistryError(f"tool {tool_ipfs_cid} is not permitted for app {app_id} v{app_version}")

            r = await conn.execute(
                text(
                    """
                    SELECT tp.policy_ipfs_cid AS policy_ipfs_cid, pp.parameters AS parameters
                    FROM tool_policies tp
                    LEFT JOIN policy_parameters pp
                      ON pp.app_id = tp.app_id
                     AND pp.app_version = tp.app_version
                     AND pp.policy_ipfs_cid = tp.policy_ipfs_cid
                     AND pp.delegator_address = :delegator
                    WHERE tp.app_id = :app_id AND tp.app_version = :app_version AND tp.tool_ipfs_cid = :tool
                    ORDER BY tp.position ASC, tp.policy_ipfs_cid ASC
                    """
                ),
                {"app_id": app_id, "app_version": app_version, "tool": tool_ipfs_cid, "delegator": delegator_address},
            )
            rows = r.mappings().all()
        policies = [ConfiguredPolicy(policy_ipfs_cid=row["policy_ipfs_cid"], parameters=row["parameters"]) for row in rows]
        return PoliciesAndApp(app_id=app_id, app_version=app_version, policies=policies)
