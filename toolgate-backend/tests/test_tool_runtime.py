"""Unit tests for ToolRuntime and the tool phase context."""

import pytest

from conftest import PayFailure, PayParams, PayResult, PayTool
from toolgate.results import PolicyAllowNoResult, ToolFailure, ToolFailureNoResult, ToolSuccess, ToolSuccessNoResult
from toolgate.tools.protocol import Tool
from toolgate.tools.runtime import ToolRuntime


class CheckedPayTool(Tool):
    package_name = "rt-tool-checked"
    tool_params_schema = PayParams
    precheck_fail_schema = PayFailure
    execute_success_schema = PayResult

    def precheck(self, params, ctx):
        if params.recipient == "0xblocked":
            return ctx.fail(PayFailure(code="BLOCKED"), message="recipient blocked")
        return ctx.succeed()

    async def execute(self, params, ctx):
        if params.amount > 100:
            raise RuntimeError("insufficient funds")
        if params.amount > 50:
            return {"txHash": "0x1"}
        if params.amount > 10:
            return ctx.succeed({"tx_hash": "0x1"})
        outcome = await ctx.commit("anything")
        return ctx.succeed(PayResult(tx_hash="0x" + ("c" if outcome.allow else "d"), amount=params.amount))


class TestToolRuntime:
    @pytest.mark.asyncio
    async def test_no_precheck_returns_none(self, base_context) -> None:
        assert await ToolRuntime(PayTool()).run_precheck({"amount": 1, "recipient": "0xabc"}, base_context) is None

    @pytest.mark.asyncio
    async def test_precheck_success_without_schema(self, base_context) -> None:
        out = await ToolRuntime(CheckedPayTool()).run_precheck({"amount": 1, "recipient": "0xabc"}, base_context)
        assert isinstance(out, ToolSuccessNoResult)
        assert out.context == base_context

    @pytest.mark.asyncio
    async def test_precheck_typed_failure(self, base_context) -> None:
        out = await ToolRuntime(CheckedPayTool()).run_precheck({"amount": 1, "recipient": "0xblocked"}, base_context)
        assert isinstance(out, ToolFailure)
        assert out.result == PayFailure(code="BLOCKED")
        assert out.message == "recipient blocked"

    @pytest.mark.asyncio
    async def test_invalid_params_never_reach_the_phase(self, base_context) -> None:
        out = await ToolRuntime(CheckedPayTool()).run_execute({"amount": -1, "recipient": "0xabc"}, base_context)
        assert isinstance(out, ToolFailureNoResult)
        assert out.message.startswith("Invalid execute parameters")
        assert out.context == base_context

    @pytest.mark.asyncio
    async def test_execute_success(self, base_context) -> None:
        out = await ToolRuntime(PayTool()).run_execute({"amount": 2, "recipient": "0xabc"}, base_context)
        assert isinstance(out, ToolSuccess)
        assert out.result == PayResult(tx_hash="0xabc", amount=2.0)

    @pytest.mark.asyncio
    async def test_exception_becomes_failure_with_context(self, base_context) -> None:
        out = await ToolRuntime(CheckedPayTool()).run_execute({"amount": 500, "recipient": "0xabc"}, base_context)
        assert isinstance(out, ToolFailureNoResult)
        assert "insufficient funds" in out.message
        assert out.context == base_context

    @pytest.mark.asyncio
    async def test_non_response_becomes_failure(self, base_context) -> None:
        out = await ToolRuntime(CheckedPayTool()).run_execute({"amount": 60, "recipient": "0xabc"}, base_context)
        assert out.success is False
        assert "expected succeed or fail" in out.message

    @pytest.mark.asyncio
    async def test_invalid_result_becomes_failure(self, base_context) -> None:
        out = await ToolRuntime(CheckedPayTool()).run_execute({"amount": 20, "recipient": "0xabc"}, base_context)
        assert isinstance(out, ToolFailureNoResult)
        assert out.message.startswith("Invalid execute result")

    @pytest.mark.asyncio
    async def test_commit_unavailable_without_hook(self, base_context) -> None:
        out = await ToolRuntime(CheckedPayTool()).run_execute({"amount": 1, "recipient": "0xabc"}, base_context)
        assert out.result.tx_hash == "0xd"

    @pytest.mark.asyncio
    async def test_commit_hook_is_used(self, base_context) -> None:
        calls = []

        async def commit_fn(name, params):
            calls.append((name, params))
            return PolicyAllowNoResult()

        out = await ToolRuntime(CheckedPayTool()).run_execute(
            {"amount": 1, "recipient": "0xabc"}, base_context, commit_fn
        )
        assert out.result.tx_hash == "0xc"
        assert calls == [("anything", None)]
