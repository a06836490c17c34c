import yaml
from typing import Dict, Any, List, Tuple, Callable, Optional
from dataclasses import dataclass, asdict, fields

from .decoder import is_unlimited_approval
from .known_safe import KnownSafeRegistry
from .models import DecodedTransaction, ThreeDAnalysis, ThreatTag

THREAT_TITLE = "What could go wrong?"

# Default tier bands: (name, exclusive upper bound). Anything above is "high".
TIERS: List[Tuple[str, int]] = [
    ("low", 30),
    ("medium", 60),
]


def map_to_tier(score: float, tiers: List[Tuple[str, int]] = TIERS) -> str:
    for name, upper in tiers:
        if score < upper:
            return name
    return "high"


def clamp_score(score: float) -> int:
    return int(max(0, min(100, score)))


@dataclass(frozen=True)
class HeuristicWeights:
    base_score: int = 20
    infinite_approval: int = 30
    approval_for_all: int = 25
    unverified_contract: int = 25
    first_interaction: int = 15
    large_value_anomaly: int = 25
    anomaly_multiplier: float = 10
    unknown_method: int = 15
    known_safe: int = -25
    safe_contract_name: int = -15
    native_transfer: int = -10
    low_below: int = 30
    medium_below: int = 60

    @property
    def tiers(self) -> List[Tuple[str, int]]:
        return [("low", self.low_below), ("medium", self.medium_below)]

    @classmethod
    def from_yaml(cls, path: str) -> "HeuristicWeights":
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except Exception as e:
            raise RuntimeError(f"Failed to load heuristic weights from {path}: {e}")
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise RuntimeError(f"Unknown heuristic weight(s) in {path}: {sorted(unknown)}")
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class HeuristicContext:
    chain_id: int
    sender: str
    to: str
    value: str
    decoded: DecodedTransaction
    is_verified: bool
    contract_name: Optional[str]
    is_first_interaction: bool
    user_avg_tx_value_usd: Optional[float] = None
    tx_value_usd: Optional[float] = None


@dataclass
class RuleHit:
    rule_id: str
    weight: int
    reason: str
    tag: Optional[ThreatTag] = None


TAG_DESCRIPTIONS = [
    (ThreatTag.INFINITE_APPROVAL, "unlimited spending approval"),
    (ThreatTag.UNVERIFIED_CONTRACT, "unverified contract"),
    (ThreatTag.FIRST_INTERACTION, "first-time interaction"),
    (ThreatTag.LARGE_VALUE_ANOMALY, "unusually high value"),
    (ThreatTag.DRAIN_RISK, "potential drain risk"),
]


class ThreatScorer:
    """Additive threat heuristics over a decoded transaction and its evidence."""

    def __init__(self, registry: KnownSafeRegistry, weights: Optional[HeuristicWeights] = None):
        self.registry = registry
        self.weights = weights or HeuristicWeights()
        self.rules: List[Callable[[HeuristicContext], Optional[RuleHit]]] = [
            self._rule_infinite_approval,
            self._rule_approval_for_all,
            self._rule_unverified_contract,
            self._rule_first_interaction,
            self._rule_large_value_anomaly,
            self._rule_unknown_method,
            self._rule_known_safe,
            self._rule_safe_contract_name,
            self._rule_native_transfer,
        ]

    # ---- Short-circuit ----
    def _drainer_target(self, ctx: HeuristicContext) -> Optional[str]:
        candidates = [ctx.to]
        params = ctx.decoded.params
        if ctx.decoded.method == "approve":
            candidates.append(params.get("spender"))
        elif ctx.decoded.method == "setApprovalForAll":
            candidates.append(params.get("operator"))
        for addr in candidates:
            if isinstance(addr, str) and self.registry.is_known_drainer(addr):
                return addr
        return None

    # ---- Rules ----
    def _rule_infinite_approval(self, ctx: HeuristicContext):
        if ctx.decoded.method != "approve":
            return None
        try:
            amount = int(ctx.decoded.params.get("amount") or 0)
        except (TypeError, ValueError):
            return None
        if not is_unlimited_approval(amount):
            return None
        return RuleHit("infinite_approval", self.weights.infinite_approval,
                       "Transaction requests unlimited token spending permission",
                       ThreatTag.INFINITE_APPROVAL)

    def _rule_approval_for_all(self, ctx: HeuristicContext):
        if ctx.decoded.method != "setApprovalForAll" or not ctx.decoded.params.get("approved"):
            return None
        return RuleHit("approval_for_all", self.weights.approval_for_all,
                       "Transaction grants operator access to all your NFTs in this collection",
                       ThreatTag.INFINITE_APPROVAL)

    def _rule_unverified_contract(self, ctx: HeuristicContext):
        if ctx.decoded.is_native_transfer or ctx.is_verified:
            return None
        return RuleHit("unverified_contract", self.weights.unverified_contract,
                       "Interacting with an unverified contract - source code not publicly available",
                       ThreatTag.UNVERIFIED_CONTRACT)

    def _rule_first_interaction(self, ctx: HeuristicContext):
        if not ctx.is_first_interaction:
            return None
        return RuleHit("first_interaction", self.weights.first_interaction,
                       "You have never interacted with this address before",
                       ThreatTag.FIRST_INTERACTION)

    def _rule_large_value_anomaly(self, ctx: HeuristicContext):
        tx_usd, avg_usd = ctx.tx_value_usd, ctx.user_avg_tx_value_usd
        if not tx_usd or not avg_usd or tx_usd <= 0 or avg_usd <= 0:
            return None
        if tx_usd <= avg_usd * self.weights.anomaly_multiplier:
            return None
        return RuleHit("large_value_anomaly", self.weights.large_value_anomaly,
                       f"Transaction value (${tx_usd:.2f}) is significantly higher than your average",
                       ThreatTag.LARGE_VALUE_ANOMALY)

    def _rule_unknown_method(self, ctx: HeuristicContext):
        if ctx.decoded.method != "unknown":
            return None
        return RuleHit("unknown_method", self.weights.unknown_method,
                       "Unable to decode transaction method - proceed with caution")

    def _rule_known_safe(self, ctx: HeuristicContext):
        if not self.registry.is_known_safe(ctx.to, ctx.chain_id):
            return None
        return RuleHit("known_safe", self.weights.known_safe,
                       "Interacting with a known safe contract")

    def _rule_safe_contract_name(self, ctx: HeuristicContext):
        if not ctx.is_verified or not self.registry.matches_safe_contract_name(ctx.contract_name):
            return None
        return RuleHit("safe_contract_name", self.weights.safe_contract_name,
                       f'Contract "{ctx.contract_name}" is verified and recognized')

    def _rule_native_transfer(self, ctx: HeuristicContext):
        if not ctx.decoded.is_native_transfer:
            return None
        return RuleHit("native_transfer", self.weights.native_transfer,
                       "Plain value transfer with no contract call")

    # ---- Evaluation ----
    def apply(self, ctx: HeuristicContext) -> List[RuleHit]:
        hits: List[RuleHit] = []
        for rule in self.rules:
            hit = rule(ctx)
            if hit is not None:
                hits.append(hit)
        return hits

    def score(self, ctx: HeuristicContext) -> ThreeDAnalysis:
        drainer = self._drainer_target(ctx)
        if drainer is not None:
            return ThreeDAnalysis(
                title=THREAT_TITLE,
                risk_level="blocked",
                score=100,
                threat_summary="BLOCKED: This address is a known malicious drainer contract.",
                threat_tags=[ThreatTag.KNOWN_DRAINER],
                reasons=[f"{drainer} is on the known drainer list"],
            )

        hits = self.apply(ctx)
        score = clamp_score(self.weights.base_score + sum(h.weight for h in hits))
        tier = map_to_tier(score, self.weights.tiers)

        tags: List[ThreatTag] = []
        for h in hits:
            if h.tag is not None and h.tag not in tags:
                tags.append(h.tag)
        if (score >= self.weights.medium_below
                and ThreatTag.INFINITE_APPROVAL in tags
                and ThreatTag.UNVERIFIED_CONTRACT in tags):
            tags.append(ThreatTag.DRAIN_RISK)

        return ThreeDAnalysis(
            title=THREAT_TITLE,
            risk_level=tier,
            score=score,
            threat_summary=threat_summary(tags, tier),
            threat_tags=tags,
            reasons=[h.reason for h in hits],
        )


def threat_summary(tags: List[ThreatTag], tier: str) -> str:
    if not tags:
        return "No significant threats detected for this transaction."

    issues = ", ".join(desc for tag, desc in TAG_DESCRIPTIONS if tag in tags)
    if tier == "high":
        return f"High risk: {issues}. If malicious, this could drain your assets."
    if tier == "medium":
        return f"Moderate risk: {issues}. Verify you trust this destination."
    return f"Low risk: {issues}. Transaction appears safe."
