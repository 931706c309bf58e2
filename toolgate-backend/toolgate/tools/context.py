"""
Per-invocation evaluation context. Immutable; the client builds a new copy at each stage
(delegation resolved, app resolved, policies evaluated) so a failure can report how far it got.
Wire format (dispatch params / remote envelope) uses camelCase aliases.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class DelegatorInfo(_Frozen):
    """Delegator's on-chain wallet identity."""

    token_id: str = Field(alias="tokenId")
    eth_address: str = Field(alias="ethAddress")
    public_key: str = Field(alias="publicKey")


class Delegation(_Frozen):
    delegatee_address: str = Field(alias="delegateeAddress")
    delegator: Optional[DelegatorInfo] = Field(default=None, alias="delegatorPkpInfo")


class AllowedPolicy(_Frozen):
    result: Any = None


class DeniedPolicy(_Frozen):
    package_name: str = Field(alias="packageName")
    result: Any = None
    error: Optional[str] = None


class PoliciesContext(_Frozen):
    """
    allow=True: every configured policy ran and none denied.
    allow=False: evaluated_policies ends with the denier; allowed_policies holds the ones before it.
    """

    allow: bool
    evaluated_policies: List[str] = Field(default_factory=list, alias="evaluatedPolicies")
    allowed_policies: Dict[str, AllowedPolicy] = Field(default_factory=dict, alias="allowedPolicies")
    denied_policy: Optional[DeniedPolicy] = Field(default=None, alias="deniedPolicy")


class EvaluationContext(_Frozen):
    tool_ipfs_cid: str = Field(alias="toolIpfsCid")
    delegation: Delegation
    app_id: Optional[int] = Field(default=None, alias="appId")
    app_version: Optional[int] = Field(default=None, alias="appVersion")
    policies_context: Optional[PoliciesContext] = Field(default=None, alias="policiesContext")

    def with_delegator(self, delegator: DelegatorInfo) -> "EvaluationContext":
        delegation = self.delegation.model_copy(update={"delegator": delegator})
        return self.model_copy(update={"delegation": delegation})

    def with_app(self, app_id: int, app_version: int) -> "EvaluationContext":
        return self.model_copy(update={"app_id": app_id, "app_version": app_version})

    def with_policies(self, policies_context: PoliciesContext) -> "EvaluationContext":
        return self.model_copy(update={"policies_context": policies_context})

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_wire(cls, data: Any) -> "EvaluationContext":
        return cls.model_validate(data)
