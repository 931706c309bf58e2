"""
Registry of policies, keyed by package name and content id. init_policies() is idempotent.
"""
from typing import Dict, List, Optional

from toolgate.policies.builtins import SendCounterPolicy, SpendingLimitPolicy
from toolgate.policies.protocol import Policy

# shared instances; tools list these in supported_policies
SEND_COUNTER = SendCounterPolicy()
SPENDING_LIMIT = SpendingLimitPolicy()

POLICIES: Dict[str, Policy] = {}
_INIT_DONE = False


def register(policy: Policy) -> None:
    if policy and policy.package_name:
        POLICIES[policy.package_name] = policy
        POLICIES[policy.ipfs_cid] = policy


def get_policy(key: str) -> Optional[Policy]:
    if not key:
        return None
    return POLICIES.get(key.strip())


def get_policies() -> List[Policy]:
    seen = {}
    for p in POLICIES.values():
        seen.setdefault(p.package_name, p)
    return list(seen.values())


def init_policies() -> None:
    """Register built-in policies. Idempotent."""
    global _INIT_DONE
    if _INIT_DONE:
        return
    register(SEND_COUNTER)
    register(SPENDING_LIMIT)
    _INIT_DONE = True
