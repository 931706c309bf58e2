"""Unit tests for resolving configured policies and running them in order."""

import pytest

from conftest import ALLOW, DENY, TRAILING, PayParams, PayTool
from toolgate.errors import RegistryError
from toolgate.policies.runner import decode_policy_params, resolve_configured_policies, run_policies
from toolgate.registry.protocol import ConfiguredPolicy


def _validated(*policies):
    tool = PayTool()
    configured = [ConfiguredPolicy(policy_ipfs_cid=p.ipfs_cid) for p in policies]
    return resolve_configured_policies(tool, configured, PayParams(amount=10, recipient="0xabc"))


class TestDecodePolicyParams:
    @pytest.mark.parametrize("raw", [None, "", "   ", b"", {}])
    def test_empty_means_none(self, raw) -> None:
        assert decode_policy_params(raw) is None

    def test_json_text_and_bytes(self) -> None:
        assert decode_policy_params('{"maxSends": 2}') == {"maxSends": 2}
        assert decode_policy_params(b'{"maxSends": 2}') == {"maxSends": 2}

    def test_mapping_passes_through(self) -> None:
        assert decode_policy_params({"a": 1}) == {"a": 1}

    def test_bad_json(self) -> None:
        with pytest.raises(RegistryError):
            decode_policy_params("{not json")


class TestResolveConfiguredPolicies:
    def test_projects_params_in_configured_order(self) -> None:
        validated = _validated(TRAILING, ALLOW)
        assert [v.package_name for v in validated] == [TRAILING.package_name, ALLOW.package_name]
        assert validated[0].tool_policy_params == {"amount": 10.0}
        assert validated[0].policy is TRAILING

    def test_unsupported_policy(self) -> None:
        with pytest.raises(RegistryError) as exc:
            resolve_configured_policies(PayTool(), [ConfiguredPolicy(policy_ipfs_cid="QmUnknown")], {})
        assert "QmUnknown" in exc.value.message


class TestRunPolicies:
    @pytest.mark.asyncio
    async def test_first_deny_stops_evaluation(self, base_context) -> None:
        validated = _validated(ALLOW, DENY, TRAILING)
        result = await run_policies(validated, "evaluate", base_context)

        assert result.allow is False
        assert result.evaluated_policies == [ALLOW.package_name, DENY.package_name]
        assert list(result.allowed_policies) == [ALLOW.package_name]
        assert result.denied_policy.package_name == DENY.package_name
        assert result.denied_policy.result == {"reason": "exceeds limit"}
        assert TRAILING.calls["evaluate"] == 0

    @pytest.mark.asyncio
    async def test_deny_first_in_order_wins(self, base_context) -> None:
        result = await run_policies(_validated(DENY, ALLOW), "precheck", base_context)
        assert result.evaluated_policies == [DENY.package_name]
        assert result.allowed_policies == {}
        assert ALLOW.calls["precheck"] == 0

    @pytest.mark.asyncio
    async def test_all_allow(self, base_context) -> None:
        result = await run_policies(_validated(ALLOW, TRAILING), "evaluate", base_context)
        assert result.allow is True
        assert result.denied_policy is None
        assert result.allowed_policies[ALLOW.package_name].result == {"ok": True}
        assert result.allowed_policies[TRAILING.package_name].result is None

    @pytest.mark.asyncio
    async def test_no_policies_allows(self, base_context) -> None:
        result = await run_policies([], "evaluate", base_context)
        assert result.allow is True
        assert result.evaluated_policies == []

    @pytest.mark.asyncio
    async def test_absent_phase_counts_as_evaluated(self, base_context) -> None:
        from toolgate.policies.protocol import Policy
        from toolgate.policies.runner import ValidatedPolicy
        from conftest import PolicyAmount

        class EvaluateOnly(Policy):
            package_name = "run-evaluate-only"
            tool_params_schema = PolicyAmount

            def evaluate(self, params, ctx):
                return ctx.allow()

        vp = ValidatedPolicy(package_name="run-evaluate-only", policy=EvaluateOnly(), tool_policy_params={"amount": 1})
        result = await run_policies([vp], "precheck", base_context)
        assert result.allow is True
        assert result.evaluated_policies == ["run-evaluate-only"]
        assert result.allowed_policies == {}

    @pytest.mark.asyncio
    async def test_on_policy_sees_each_outcome(self, base_context) -> None:
        seen = []

        async def on_policy(name, outcome):
            seen.append((name, outcome.allow))

        await run_policies(_validated(ALLOW, DENY, TRAILING), "evaluate", base_context, on_policy=on_policy)
        assert seen == [(ALLOW.package_name, True), (DENY.package_name, False)]
