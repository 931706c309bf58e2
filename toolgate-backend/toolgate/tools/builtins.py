"""
Built-in tools.
TRANSFER: deterministic local transfer (no chain); commits the policies that allowed it.
NOOP: echoes its payload. FAIL: always returns a typed failure (for e2e checks).
"""
import hashlib
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from toolgate.policies.builtins import SpendingLimitPolicy
from toolgate.policies.registry import SEND_COUNTER, SPENDING_LIMIT
from toolgate.tools.protocol import SupportedPolicy, Tool, ToolPhaseContext


class _Camel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _transfer_id(delegator: str, to_address: str, amount_usd: float, token: str) -> str:
    """sha256 over the transfer fields, first 16 hex."""
    raw = f"{delegator.lower()}|{to_address.lower()}|{amount_usd:.8f}|{token.upper()}"
    return "tx_" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


class TransferParams(_Camel):
    to_address: str = Field(min_length=1)
    amount_usd: float = Field(gt=0)
    token_symbol: str = "USDC"


class TransferPrecheckOk(_Camel):
    to_address: str
    amount_usd: float
    token_symbol: str


class TransferPrecheckFail(_Camel):
    reason: str


class TransferResult(_Camel):
    transfer_id: str
    to_address: str
    amount_usd: float
    token_symbol: str
    committed_policies: List[str] = Field(default_factory=list)


class TransferFailure(_Camel):
    reason: str
    policy: str = ""


class TransferTool(Tool):
    package_name = "toolgate-tool-transfer"
    tool_params_schema = TransferParams
    supported_policies = [
        SupportedPolicy(SEND_COUNTER, {"to_address": "to"}),
        SupportedPolicy(SPENDING_LIMIT, {"amount_usd": "buy_amount_usd", "token_symbol": "token_symbol"}),
    ]
    precheck_success_schema = TransferPrecheckOk
    precheck_fail_schema = TransferPrecheckFail
    execute_success_schema = TransferResult
    execute_fail_schema = TransferFailure

    def precheck(self, params: TransferParams, ctx: ToolPhaseContext):
        delegator = ctx.delegator
        if delegator is not None and params.to_address.lower() == delegator.eth_address.lower():
            return ctx.fail(TransferPrecheckFail(reason="cannot transfer to the delegator's own address"))
        return ctx.succeed(
            TransferPrecheckOk(
                to_address=params.to_address, amount_usd=params.amount_usd, token_symbol=params.token_symbol
            )
        )

    async def execute(self, params: TransferParams, ctx: ToolPhaseContext):
        delegator = ctx.delegator.eth_address if ctx.delegator else ""
        transfer_id = _transfer_id(delegator, params.to_address, params.amount_usd, params.token_symbol)
        committed: List[str] = []
        allowed = ctx.policies_context.allowed_policies if ctx.policies_context else {}
        for name in allowed:
            commit_params: Any = None
            if name == SpendingLimitPolicy.package_name:
                commit_params = {"amountSpentUsd": params.amount_usd}
            outcome = await ctx.commit(name, commit_params)
            if not outcome.allow:
                return ctx.fail(
                    TransferFailure(reason=outcome.error or "commit denied", policy=name),
                    message=f"commit failed for {name}",
                )
            committed.append(name)
        return ctx.succeed(
            TransferResult(
                transfer_id=transfer_id,
                to_address=params.to_address,
                amount_usd=params.amount_usd,
                token_symbol=params.token_symbol,
                committed_policies=committed,
            )
        )


class NoopParams(_Camel):
    payload: Dict[str, Any] = Field(default_factory=dict)


class NoopResult(_Camel):
    type: str = "noop"
    payload: Dict[str, Any] = Field(default_factory=dict)


class NoopTool(Tool):
    package_name = "toolgate-tool-noop"
    tool_params_schema = NoopParams
    execute_success_schema = NoopResult

    def execute(self, params: NoopParams, ctx: ToolPhaseContext):
        return ctx.succeed(NoopResult(payload=params.payload))


class FailParams(_Camel):
    model_config = ConfigDict(extra="allow")


class FailResult(_Camel):
    code: str
    message: str


class FailTool(Tool):
    package_name = "toolgate-tool-fail"
    tool_params_schema = FailParams
    execute_fail_schema = FailResult

    def execute(self, params: FailParams, ctx: ToolPhaseContext):
        return ctx.fail(
            FailResult(code="INTENTIONAL_FAIL", message="fail tool for e2e test"),
            message="intentional failure",
        )
