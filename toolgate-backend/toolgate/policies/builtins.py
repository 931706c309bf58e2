"""
Built-in policies: send counter (N sends per window) and daily USD spending limit.
Both keep their state in the policy ledger, keyed by policy + app + delegator.
Precheck and evaluate only read; commit records.
"""
import time
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from toolgate.policies import ledger as ledger_mod
from toolgate.policies.protocol import CommitParams, Policy, PolicyParams, PolicyPhaseContext

DAY_SECONDS = 86400


class _Camel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _ledger_key(package_name: str, ctx: PolicyPhaseContext) -> str:
    delegator = ctx.delegator
    address = (delegator.eth_address if delegator else "").lower()
    return f"{package_name}:{ctx.app_id or 0}:{address}"


class _LedgerPolicy(Policy):
    abstract = True

    def __init__(self, ledger: Optional[ledger_mod.PolicyLedger] = None, clock: Optional[Callable[[], float]] = None):
        self._ledger = ledger
        self._clock = clock or time.time

    @property
    def ledger(self) -> ledger_mod.PolicyLedger:
        return self._ledger if self._ledger is not None else ledger_mod.get_ledger()


# -- send counter ----------------------------------------------------------------


class SendCounterToolParams(_Camel):
    to: str = Field(min_length=1)


class SendCounterUserParams(_Camel):
    max_sends: int = Field(gt=0)
    time_window_seconds: int = Field(gt=0)


class SendCounterAllow(_Camel):
    current_count: int
    max_sends: int
    remaining_sends: int
    time_window_seconds: int


class SendCounterDeny(_Camel):
    reason: str
    current_count: int
    max_sends: int
    seconds_until_reset: int


class SendCounterCommitAllow(_Camel):
    recorded: bool
    # sends kept in the ledger (RETAIN_SECONDS), not the policy window
    retained_sends: int


class SendCounterPolicy(_LedgerPolicy):
    """At most maxSends sends per timeWindowSeconds, per delegator and app."""

    package_name = "toolgate-policy-send-counter"
    tool_params_schema = SendCounterToolParams
    user_params_schema = SendCounterUserParams
    precheck_allow_result_schema = SendCounterAllow
    precheck_deny_result_schema = SendCounterDeny
    eval_allow_result_schema = SendCounterAllow
    eval_deny_result_schema = SendCounterDeny
    commit_allow_result_schema = SendCounterCommitAllow

    def _check(self, params: PolicyParams, ctx: PolicyPhaseContext):
        user: SendCounterUserParams = params.user_params
        now = self._clock()
        key = _ledger_key(self.package_name, ctx)
        current = ledger_mod.count(self.ledger, key, user.time_window_seconds, now)
        if current >= user.max_sends:
            oldest = ledger_mod.oldest_ts(self.ledger, key, user.time_window_seconds, now) or now
            return ctx.deny(
                SendCounterDeny(
                    reason=f"Send limit reached: {current}/{user.max_sends} in {user.time_window_seconds}s",
                    current_count=current,
                    max_sends=user.max_sends,
                    seconds_until_reset=max(0, int(oldest + user.time_window_seconds - now)),
                )
            )
        return ctx.allow(
            SendCounterAllow(
                current_count=current,
                max_sends=user.max_sends,
                remaining_sends=user.max_sends - current,
                time_window_seconds=user.time_window_seconds,
            )
        )

    def precheck(self, params: PolicyParams, ctx: PolicyPhaseContext):
        return self._check(params, ctx)

    def evaluate(self, params: PolicyParams, ctx: PolicyPhaseContext):
        return self._check(params, ctx)

    def commit(self, params: CommitParams, ctx: PolicyPhaseContext):
        now = self._clock()
        key = _ledger_key(self.package_name, ctx)
        self.ledger.record(key, 1.0, now)
        return ctx.allow(
            SendCounterCommitAllow(
                recorded=True,
                retained_sends=ledger_mod.count(self.ledger, key, ledger_mod.RETAIN_SECONDS, now),
            )
        )


# -- spending limit --------------------------------------------------------------


class SpendingLimitToolParams(_Camel):
    buy_amount_usd: float = Field(gt=0)
    token_symbol: str = ""


class SpendingLimitUserParams(_Camel):
    max_daily_spend_usd: float = Field(gt=0)


class SpendingLimitAllow(_Camel):
    max_spending_limit_usd: float
    buy_amount_usd: float
    spent_today_usd: float


class SpendingLimitDeny(_Camel):
    reason: str
    max_spending_limit_usd: float
    buy_amount_usd: float
    spent_today_usd: float


class SpendingLimitCommitParams(_Camel):
    amount_spent_usd: float = Field(gt=0)


class SpendingLimitCommitAllow(_Camel):
    spent_today_usd: float


SPEND_DENY_REASON = "Attempted spend exceeds daily limit"


class SpendingLimitPolicy(_LedgerPolicy):
    """Rolling 24h USD cap per delegator and app."""

    package_name = "toolgate-policy-spending-limit"
    tool_params_schema = SpendingLimitToolParams
    user_params_schema = SpendingLimitUserParams
    precheck_allow_result_schema = SpendingLimitAllow
    precheck_deny_result_schema = SpendingLimitDeny
    eval_allow_result_schema = SpendingLimitAllow
    eval_deny_result_schema = SpendingLimitDeny
    commit_params_schema = SpendingLimitCommitParams
    commit_allow_result_schema = SpendingLimitCommitAllow

    def _check(self, params: PolicyParams, ctx: PolicyPhaseContext):
        user: SpendingLimitUserParams = params.user_params
        tool: SpendingLimitToolParams = params.tool_params
        spent = ledger_mod.total(self.ledger, _ledger_key(self.package_name, ctx), DAY_SECONDS, self._clock())
        fields = dict(
            max_spending_limit_usd=user.max_daily_spend_usd,
            buy_amount_usd=tool.buy_amount_usd,
            spent_today_usd=spent,
        )
        if spent + tool.buy_amount_usd > user.max_daily_spend_usd:
            return ctx.deny(SpendingLimitDeny(reason=SPEND_DENY_REASON, **fields))
        return ctx.allow(SpendingLimitAllow(**fields))

    def precheck(self, params: PolicyParams, ctx: PolicyPhaseContext):
        return self._check(params, ctx)

    def evaluate(self, params: PolicyParams, ctx: PolicyPhaseContext):
        return self._check(params, ctx)

    def commit(self, params: CommitParams, ctx: PolicyPhaseContext):
        commit: SpendingLimitCommitParams = params.params
        now = self._clock()
        key = _ledger_key(self.package_name, ctx)
        self.ledger.record(key, commit.amount_spent_usd, now)
        return ctx.allow(SpendingLimitCommitAllow(spent_today_usd=ledger_mod.total(self.ledger, key, DAY_SECONDS, now)))

