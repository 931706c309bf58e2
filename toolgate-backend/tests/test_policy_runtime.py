"""Unit tests for PolicyRuntime."""

import pytest
from pydantic import BaseModel

from conftest import ALLOW, DENY, AllowResult, DenyReason, PolicyAmount
from toolgate.policies.protocol import Policy
from toolgate.policies.runtime import PolicyRuntime
from toolgate.results import PolicyAllow, PolicyAllowNoResult, PolicyDeny, PolicyDenyNoResult


class Limit(BaseModel):
    max_amount: float


class Recorded(BaseModel):
    recorded: float


class LimitPolicy(Policy):
    package_name = "rt-limit"
    tool_params_schema = PolicyAmount
    user_params_schema = Limit
    eval_allow_result_schema = AllowResult
    eval_deny_result_schema = DenyReason
    commit_params_schema = PolicyAmount
    commit_allow_result_schema = Recorded

    def evaluate(self, params, ctx):
        if params.tool_params.amount > params.user_params.max_amount:
            return ctx.deny(DenyReason(reason="over"))
        return ctx.allow(AllowResult())

    def commit(self, params, ctx):
        return ctx.allow(Recorded(recorded=params.params.amount))


class RaisingPolicy(Policy):
    package_name = "rt-raises"
    tool_params_schema = PolicyAmount

    async def evaluate(self, params, ctx):
        raise RuntimeError("oracle unavailable")


class WrongShapePolicy(Policy):
    package_name = "rt-wrong-shape"
    tool_params_schema = PolicyAmount
    eval_allow_result_schema = AllowResult

    def precheck(self, params, ctx):
        return {"allow": True}

    def evaluate(self, params, ctx):
        return ctx.allow({"ok": "definitely"})


class SchemaLessDenyPolicy(Policy):
    package_name = "rt-schemaless-deny"
    tool_params_schema = PolicyAmount

    def evaluate(self, params, ctx):
        return ctx.deny(error=f"app {ctx.app_id} blocked")


class TestPolicyRuntime:
    @pytest.mark.asyncio
    async def test_absent_phase_returns_none(self, base_context) -> None:
        runtime = PolicyRuntime(LimitPolicy())
        assert await runtime.run_precheck({"amount": 1}, {"max_amount": 5}, base_context) is None

    @pytest.mark.asyncio
    async def test_allow_with_validated_result(self, base_context) -> None:
        out = await PolicyRuntime(LimitPolicy()).run_evaluate({"amount": 1}, {"max_amount": 5}, base_context)
        assert isinstance(out, PolicyAllow)
        assert out.result == AllowResult(ok=True)

    @pytest.mark.asyncio
    async def test_deny_with_reason(self, base_context) -> None:
        out = await PolicyRuntime(LimitPolicy()).run_evaluate({"amount": 9}, {"max_amount": 5}, base_context)
        assert isinstance(out, PolicyDeny)
        assert out.result.reason == "over"

    @pytest.mark.asyncio
    async def test_invalid_user_params_deny_without_calling_phase(self, base_context) -> None:
        out = await PolicyRuntime(LimitPolicy()).run_evaluate({"amount": 1}, {"max": 5}, base_context)
        assert isinstance(out, PolicyDenyNoResult)
        assert out.error.startswith("Invalid evaluate parameters")

    @pytest.mark.asyncio
    async def test_exception_becomes_deny(self, base_context) -> None:
        out = await PolicyRuntime(RaisingPolicy()).run_evaluate({"amount": 1}, None, base_context)
        assert out.allow is False
        assert "oracle unavailable" in out.error

    @pytest.mark.asyncio
    async def test_non_outcome_return_becomes_deny(self, base_context) -> None:
        out = await PolicyRuntime(WrongShapePolicy()).run_precheck({"amount": 1}, None, base_context)
        assert isinstance(out, PolicyDenyNoResult)
        assert "expected allow or deny" in out.error

    @pytest.mark.asyncio
    async def test_invalid_allow_result_never_allows(self, base_context) -> None:
        out = await PolicyRuntime(WrongShapePolicy()).run_evaluate({"amount": 1}, None, base_context)
        assert out.allow is False
        assert out.error.startswith("Invalid evaluate result")

    @pytest.mark.asyncio
    async def test_schema_less_deny_carries_error(self, base_context) -> None:
        out = await PolicyRuntime(SchemaLessDenyPolicy()).run_evaluate({"amount": 1}, None, base_context)
        assert isinstance(out, PolicyDenyNoResult)
        assert out.error == "app 7 blocked"

    @pytest.mark.asyncio
    async def test_sync_and_async_phases(self, base_context) -> None:
        pre = await PolicyRuntime(ALLOW).run_precheck({"amount": 1}, None, base_context)
        ev = await PolicyRuntime(ALLOW).run_evaluate({"amount": 1}, None, base_context)
        assert pre.allow and ev.allow
        assert ALLOW.calls == {"precheck": 1, "evaluate": 1, "commit": 0}

    @pytest.mark.asyncio
    async def test_commit_validates_params(self, base_context) -> None:
        runtime = PolicyRuntime(LimitPolicy())
        out = await runtime.run_commit({"amount": 3}, base_context)
        assert isinstance(out, PolicyAllow)
        assert out.result.recorded == 3.0
        bad = await runtime.run_commit({"amount": "x"}, base_context)
        assert bad.allow is False
        assert bad.error.startswith("Invalid commit parameters")

    @pytest.mark.asyncio
    async def test_commit_absent(self, base_context) -> None:
        assert await PolicyRuntime(DENY).run_commit(None, base_context) is None

    @pytest.mark.asyncio
    async def test_allow_without_schema_has_no_result(self, base_context) -> None:
        class Bare(Policy):
            package_name = "rt-bare"
            tool_params_schema = PolicyAmount

            def evaluate(self, params, ctx):
                return ctx.allow()

        out = await PolicyRuntime(Bare()).run_evaluate({"amount": 1}, None, base_context)
        assert isinstance(out, PolicyAllowNoResult)

    @pytest.mark.asyncio
    async def test_allow_value_without_schema_denies(self, base_context) -> None:
        class Chatty(Policy):
            package_name = "rt-chatty"
            tool_params_schema = PolicyAmount

            def evaluate(self, params, ctx):
                return ctx.allow({"ok": True})

        out = await PolicyRuntime(Chatty()).run_evaluate({"amount": 1}, None, base_context)
        assert isinstance(out, PolicyDenyNoResult)
        assert out.error == "rt-chatty evaluate failed: allow result given but no allow result schema is declared"

    @pytest.mark.asyncio
    async def test_deny_value_without_schema_still_denies(self, base_context) -> None:
        class Terse(Policy):
            package_name = "rt-terse"
            tool_params_schema = PolicyAmount

            def evaluate(self, params, ctx):
                return ctx.deny({"why": "no"}, error="blocked")

        out = await PolicyRuntime(Terse()).run_evaluate({"amount": 1}, None, base_context)
        assert isinstance(out, PolicyDenyNoResult)
        assert "no deny result schema" in out.error
