"""
Delegation registry as seen by the client: who the delegator is, and which policies
(with stored parameters) apply for this tool under the delegatee's app version.
Implementations raise RegistryError on not-found / not-permitted.
"""
from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol

from toolgate.tools.context import DelegatorInfo


@dataclass(frozen=True)
class ConfiguredPolicy:
    """One policy as configured by the delegator. parameters is the stored (encoded) value."""

    policy_ipfs_cid: str
    parameters: Any = None


@dataclass(frozen=True)
class PoliciesAndApp:
    app_id: int
    app_version: int
    policies: List[ConfiguredPolicy] = field(default_factory=list)


class DelegationResolver(Protocol):
    async def get_delegator_info(self, delegator_address: str, rpc_url: Optional[str] = None) -> DelegatorInfo:
        ...

    async def get_policies_and_app_version(
        self, delegatee_address: str, delegator: DelegatorInfo, tool_ipfs_cid: str
    ) -> PoliciesAndApp:
        ...
