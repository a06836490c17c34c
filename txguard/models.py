from enum import Enum
from typing import Optional, List, Dict, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

RiskLevel = Literal["low", "medium", "high", "blocked"]
GuardAction = Literal["allow", "warn", "block"]


class GuardModel(BaseModel):
    # camelCase on the wire, snake_case in Python; immutable once built
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class ThreatTag(str, Enum):
    INFINITE_APPROVAL = "infinite_approval"
    UNVERIFIED_CONTRACT = "unverified_contract"
    FIRST_INTERACTION = "first_interaction"
    LARGE_VALUE_ANOMALY = "large_value_anomaly"
    KNOWN_DRAINER = "known_drainer"
    DRAIN_RISK = "drain_risk"
    PHISHING_SUSPECTED = "phishing_suspected"
    HONEYPOT_SUSPECTED = "honeypot_suspected"
    REENTRANCY_RISK = "reentrancy_risk"
    MEV_VULNERABLE = "mev_vulnerable"
    HONEY_POT = "honey_pot"
    DRAINER_SIGNATURE = "drainer_signature"


# ------------------------------------------------------------------
#  Request
# ------------------------------------------------------------------
class UserContext(GuardModel):
    avg_tx_value_usd: Optional[float] = Field(default=None, alias="avgTxValueUSD")
    tx_value_usd: Optional[float] = Field(default=None, alias="txValueUSD")
    lifetime_tx_count: Optional[int] = None
    known_contacts: Optional[List[str]] = None
    preferred_language: Optional[str] = None


class TransactionRequest(GuardModel):
    chain_id: int = Field(gt=0)
    sender: str = Field(alias="from", min_length=1)
    to: str = Field(min_length=1)
    value: str = "0"
    data: str = "0x"
    gas: Optional[str] = None
    max_fee_per_gas: Optional[str] = None
    max_priority_fee_per_gas: Optional[str] = None
    nonce: Optional[int] = None
    user_context: Optional[UserContext] = None

    @field_validator("sender", "to")
    @classmethod
    def _lower_address(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("address must not be empty")
        return v

    @field_validator("value", mode="before")
    @classmethod
    def _decimal_wei(cls, v: Any) -> str:
        if v is None:
            return "0"
        if isinstance(v, bool):
            raise ValueError("value must be a decimal wei string")
        if isinstance(v, int):
            if v < 0:
                raise ValueError("value must not be negative")
            return str(v)
        v = str(v).strip()
        if v == "":
            return "0"
        # isdigit alone also accepts non-ASCII digits such as superscripts
        if not (v.isascii() and v.isdigit()):
            raise ValueError("value must be a decimal wei string")
        return v

    @field_validator("data", mode="before")
    @classmethod
    def _hex_data(cls, v: Any) -> str:
        if v is None:
            return "0x"
        v = str(v).strip().lower()
        return v or "0x"


# ------------------------------------------------------------------
#  Evidence
# ------------------------------------------------------------------
class DecodedTransaction(GuardModel):
    method: str
    method_id: str
    abi: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)
    is_native_transfer: bool = False
    is_contract_call: bool = False


class ContractInfo(GuardModel):
    is_verified: bool = False
    contract_name: Optional[str] = None
    compiler_version: Optional[str] = None
    is_proxy: bool = False
    implementation: Optional[str] = None


class BalanceChange(GuardModel):
    token: str
    symbol: str
    before: str = "0"
    after: str = "0"
    delta: str
    is_increase: bool


class DecodedLog(GuardModel):
    name: str
    params: Dict[str, Any] = Field(default_factory=dict)


class SimulationLog(GuardModel):
    address: str
    topics: List[str] = Field(default_factory=list)
    data: str = "0x"
    decoded: Optional[DecodedLog] = None


class SimulationResult(GuardModel):
    success: bool
    gas_used: str
    balance_changes: List[BalanceChange] = Field(default_factory=list)
    logs: List[SimulationLog] = Field(default_factory=list)
    error: Optional[str] = None


# ------------------------------------------------------------------
#  Analyses
# ------------------------------------------------------------------
class DimensionAnalysis(GuardModel):
    title: str
    risk_level: RiskLevel
    score: int = Field(ge=0, le=100)


class OneDAnalysis(DimensionAnalysis):
    reasons: List[str] = Field(default_factory=list)
    labels: List[str] = Field(default_factory=list)
    is_verified: bool = False
    contract_name: Optional[str] = None
    is_proxy: bool = False
    implementation: Optional[str] = None


class TwoDAnalysis(DimensionAnalysis):
    simulation_summary: str
    effects: List[str] = Field(default_factory=list)
    balance_changes: List[BalanceChange] = Field(default_factory=list)


class ThreeDAnalysis(DimensionAnalysis):
    threat_summary: str
    threat_tags: List[ThreatTag] = Field(default_factory=list)
    reasons: List[str] = Field(default_factory=list)


class Dimensions(GuardModel):
    one_d: OneDAnalysis
    two_d: TwoDAnalysis
    three_d: ThreeDAnalysis


# ------------------------------------------------------------------
#  Response
# ------------------------------------------------------------------
class LLMExplanation(GuardModel):
    short: str
    detailed: str
    recommendation: str


class UIHints(GuardModel):
    show_red_banner: bool
    show_confirm_button: bool
    show_reject_button: bool
    require_hold_to_confirm: bool
    banner_color: Literal["green", "yellow", "red"]


class OverallVerdict(GuardModel):
    risk_level: RiskLevel
    score: int = Field(ge=0, le=100)
    summary: str
    action: GuardAction


class AIGuardResponse(GuardModel):
    overall: OverallVerdict
    dimensions: Dimensions
    llm_explanation: LLMExplanation
    ui_hints: UIHints
    processing_time_ms: int
    timestamp: int
    degraded_sources: List[str] = Field(default_factory=list)
