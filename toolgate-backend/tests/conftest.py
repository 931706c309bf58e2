"""
Pytest configuration and fixtures for toolgate tests.
"""
import json
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from toolgate.db.tables import init_tables, metadata
from toolgate.errors import RegistryError
from toolgate.executors.protocol import DispatchResult
from toolgate.policies.ledger import MemoryPolicyLedger, set_ledger
from toolgate.policies.protocol import Policy
from toolgate.registry.protocol import ConfiguredPolicy, PoliciesAndApp
from toolgate.tools.context import Delegation, DelegatorInfo, EvaluationContext
from toolgate.tools.protocol import SupportedPolicy, Tool

DELEGATEE = "0xdelegatee"
DELEGATOR = DelegatorInfo(token_id="42", eth_address="0xDelegator", public_key="0xpubkey")


# -- sample policies -------------------------------------------------------------


class PolicyAmount(BaseModel):
    amount: float


class AllowResult(BaseModel):
    ok: bool = True


class DenyReason(BaseModel):
    reason: str


class _Counting(Policy):
    abstract = True

    def __init__(self) -> None:
        self.calls: Dict[str, int] = {"precheck": 0, "evaluate": 0, "commit": 0}


class AlwaysAllowPolicy(_Counting):
    package_name = "test-policy-allow"
    tool_params_schema = PolicyAmount
    precheck_allow_result_schema = AllowResult
    eval_allow_result_schema = AllowResult

    def precheck(self, params, ctx):
        self.calls["precheck"] += 1
        return ctx.allow(AllowResult())

    async def evaluate(self, params, ctx):
        self.calls["evaluate"] += 1
        return ctx.allow(AllowResult())


class ExceedsLimitPolicy(_Counting):
    package_name = "test-policy-deny"
    tool_params_schema = PolicyAmount
    precheck_deny_result_schema = DenyReason
    eval_deny_result_schema = DenyReason

    def precheck(self, params, ctx):
        self.calls["precheck"] += 1
        return ctx.deny(DenyReason(reason="exceeds limit"))

    def evaluate(self, params, ctx):
        self.calls["evaluate"] += 1
        return ctx.deny(DenyReason(reason="exceeds limit"))


class TrailingPolicy(_Counting):
    package_name = "test-policy-trailing"
    tool_params_schema = PolicyAmount

    def precheck(self, params, ctx):
        self.calls["precheck"] += 1
        return ctx.allow()

    def evaluate(self, params, ctx):
        self.calls["evaluate"] += 1
        return ctx.allow()


ALLOW = AlwaysAllowPolicy()
DENY = ExceedsLimitPolicy()
TRAILING = TrailingPolicy()


# -- sample tool -----------------------------------------------------------------


class PayParams(BaseModel):
    amount: float = Field(gt=0)
    recipient: str = Field(min_length=1)


class PayResult(BaseModel):
    tx_hash: str
    amount: float


class PayFailure(BaseModel):
    code: str


class PayTool(Tool):
    package_name = "test-tool-pay"
    tool_params_schema = PayParams
    supported_policies = [
        SupportedPolicy(ALLOW, {"amount": "amount"}),
        SupportedPolicy(DENY, {"amount": "amount"}),
        SupportedPolicy(TRAILING, {"amount": "amount"}),
    ]
    execute_success_schema = PayResult
    execute_fail_schema = PayFailure

    def execute(self, params, ctx):
        return ctx.succeed(PayResult(tx_hash="0xabc", amount=params.amount))


# -- fakes -----------------------------------------------------------------------


class FakeResolver:
    """In-memory DelegationResolver; counts calls so tests can assert zero network use."""

    def __init__(self, policies: Optional[List[ConfiguredPolicy]] = None, app_id: int = 7, app_version: int = 3):
        self.policies = list(policies or [])
        self.app_id = app_id
        self.app_version = app_version
        self.delegator = DELEGATOR
        self.calls: List[str] = []
        self.error: Optional[Exception] = None

    async def get_delegator_info(self, delegator_address: str, rpc_url: Optional[str] = None) -> DelegatorInfo:
        self.calls.append("get_delegator_info")
        if self.error is not None:
            raise self.error
        if delegator_address.lower() != self.delegator.eth_address.lower():
            raise RegistryError(f"delegator {delegator_address} not found")
        return self.delegator

    async def get_policies_and_app_version(
        self, delegatee_address: str, delegator: DelegatorInfo, tool_ipfs_cid: str
    ) -> PoliciesAndApp:
        self.calls.append("get_policies_and_app_version")
        return PoliciesAndApp(app_id=self.app_id, app_version=self.app_version, policies=list(self.policies))


class FakeExecutor:
    """RemoteExecutor returning a canned DispatchResult (or raising)."""

    def __init__(self, result: Optional[DispatchResult] = None, error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.dispatched: List[Dict[str, Any]] = []

    async def dispatch(self, code_reference: str, js_params: Dict[str, Any]) -> DispatchResult:
        self.dispatched.append({"code_reference": code_reference, "js_params": js_params})
        if self.error is not None:
            raise self.error
        return self.result


def envelope(success: bool = True, result: Any = None, error: Optional[str] = None, context: Any = None) -> str:
    body: Dict[str, Any] = {"success": success}
    if result is not None:
        body["result"] = result
    if error is not None:
        body["error"] = error
    return json.dumps({"toolExecutionResult": body, "toolContext": context})


def configured(*policies: Policy, params: Optional[Dict[str, Any]] = None) -> List[ConfiguredPolicy]:
    params = params or {}
    return [ConfiguredPolicy(policy_ipfs_cid=p.ipfs_cid, parameters=params.get(p.package_name)) for p in policies]


# -- fixtures --------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_sample_policies():
    for p in (ALLOW, DENY, TRAILING):
        p.calls = {"precheck": 0, "evaluate": 0, "commit": 0}
    yield


@pytest.fixture
def ledger() -> MemoryPolicyLedger:
    """Fresh process-wide in-memory ledger for built-in policies."""
    ledger = MemoryPolicyLedger()
    set_ledger(ledger)
    yield ledger
    set_ledger(None)


@pytest.fixture
def pay_tool() -> PayTool:
    return PayTool()


@pytest.fixture
def base_context() -> EvaluationContext:
    return EvaluationContext(
        tool_ipfs_cid="test-tool-pay",
        delegation=Delegation(delegatee_address=DELEGATEE, delegator=DELEGATOR),
        app_id=7,
        app_version=3,
    )


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def engine():
    """In-memory registry/event database with all tables created."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_tables(engine)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
    await engine.dispose()
