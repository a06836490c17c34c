"""
Identity (1D), simulated effect (2D) and overall aggregation.

The threat dimension (3D) comes straight from ``rules.ThreatScorer``.
"""

import math
from typing import List, Tuple

from .models import (
    ContractInfo, OneDAnalysis, TwoDAnalysis, ThreeDAnalysis, SimulationResult,
    OverallVerdict, UIHints, GuardAction,
)
from .rules import TIERS, map_to_tier, clamp_score

IDENTITY_TITLE = "Who are you interacting with?"
EFFECT_TITLE = "What will this transaction do?"

IDENTITY_SCORES = {
    "eoa": 10,
    "known_safe": 15,
    "verified_contract": 30,
    "unverified_contract": 70,
}
FIRST_CONTRACT_INTERACTION_PENALTY = 10

EFFECT_NOMINAL_SCORE = 30
EFFECT_FAILED_SCORE = 70
# a nominal simulation should read as low
EFFECT_TIERS = [("low", 40), ("medium", 60)]

ACTIONS = {"blocked": "block", "high": "warn", "medium": "allow", "low": "allow"}


# ------------------------------------------------------------------
#  1D: identity
# ------------------------------------------------------------------
def identity_analysis(is_contract: bool, is_known_safe: bool, contract: ContractInfo,
                      is_first_interaction: bool, tiers: List[Tuple[str, int]] = TIERS) -> OneDAnalysis:
    reasons: List[str] = []
    labels: List[str] = []

    if not is_contract:
        reasons.append("Sending to a regular wallet address (EOA)")
        category = "eoa"
    elif is_known_safe:
        reasons.append("Interacting with a verified safe contract")
        category = "known_safe"
    elif contract.is_verified:
        reasons.append(f"Contract is verified: {contract.contract_name or 'Unknown'}")
        category = "verified_contract"
    else:
        reasons.append("Contract source code is NOT verified")
        category = "unverified_contract"
    labels.append(category)
    score = IDENTITY_SCORES[category]

    if is_contract and contract.is_proxy:
        reasons.append("Contract is an upgradeable proxy; its logic can change")

    if is_first_interaction and is_contract:
        reasons.append("First time interacting with this address")
        labels.append("first_interaction")
        score = min(100, score + FIRST_CONTRACT_INTERACTION_PENALTY)

    return OneDAnalysis(
        title=IDENTITY_TITLE,
        risk_level=map_to_tier(score, tiers),
        score=score,
        reasons=reasons,
        labels=labels,
        is_verified=contract.is_verified,
        contract_name=contract.contract_name,
        is_proxy=contract.is_proxy,
        implementation=contract.implementation,
    )


# ------------------------------------------------------------------
#  2D: simulated effect
# ------------------------------------------------------------------
def _is_swap(method: str) -> bool:
    return "swap" in method.lower() or method.startswith("exact")


def method_effects(method: str, params: dict) -> List[str]:
    if method == "approve":
        return [
            "Contract gains permission to spend your tokens",
            "No tokens move immediately",
            "You can revoke this approval later",
        ]
    if method == "setApprovalForAll":
        if params.get("approved"):
            return [
                "Operator gains control of every NFT you hold in this collection",
                "No NFTs move immediately",
                "You can revoke this approval later",
            ]
        return ["Operator loses access to your NFTs in this collection"]
    if method == "native_transfer":
        return [
            "ETH will be transferred immediately",
            "This action cannot be reversed",
        ]
    if method in ("transfer", "transferFrom", "safeTransferFrom"):
        return [
            "Tokens will be transferred immediately",
            "This action cannot be reversed",
        ]
    if _is_swap(method):
        return [
            "Tokens will be exchanged via DEX",
            "Exact output depends on current prices",
        ]
    return []


def effect_analysis(simulation: SimulationResult, method: str, params: dict) -> TwoDAnalysis:
    effects: List[str] = []
    for change in simulation.balance_changes:
        direction = "receive" if change.is_increase else "send"
        effects.append(f"You will {direction} {change.delta} {change.symbol}")

    effects.extend(method_effects(method, params))
    if not effects:
        effects.append("Contract interaction will modify state")
        effects.append("Review carefully before proceeding")

    score = EFFECT_NOMINAL_SCORE
    if not simulation.success:
        score = EFFECT_FAILED_SCORE
        effects.append(f"Simulation failed: {simulation.error or 'Unknown error'}")

    if simulation.balance_changes:
        changes = ", ".join(
            f"{'+' if c.is_increase else '-'}{c.delta} {c.symbol}" for c in simulation.balance_changes
        )
        summary = f"Expected balance changes: {changes}"
    elif not simulation.success:
        summary = f"Simulation predicts this transaction will fail: {simulation.error or 'Unknown error'}"
    else:
        summary = "Transaction simulated successfully. No token transfers detected."

    return TwoDAnalysis(
        title=EFFECT_TITLE,
        risk_level=map_to_tier(score, EFFECT_TIERS),
        score=score,
        simulation_summary=summary,
        effects=effects,
        balance_changes=list(simulation.balance_changes),
    )


# ------------------------------------------------------------------
#  Overall
# ------------------------------------------------------------------
def average_score(*scores: int) -> int:
    # half-up rounding, not banker's
    return clamp_score(math.floor(sum(scores) / len(scores) + 0.5))


def action_for(risk_level: str) -> GuardAction:
    return ACTIONS[risk_level]


def overall_verdict(one_d: OneDAnalysis, two_d: TwoDAnalysis, three_d: ThreeDAnalysis,
                    summary: str, tiers: List[Tuple[str, int]] = TIERS) -> OverallVerdict:
    score = average_score(one_d.score, two_d.score, three_d.score)
    risk_level = "blocked" if three_d.risk_level == "blocked" else map_to_tier(score, tiers)
    return OverallVerdict(
        risk_level=risk_level,
        score=score,
        summary=summary,
        action=action_for(risk_level),
    )


def ui_hints(risk_level: str) -> UIHints:
    return UIHints(
        show_red_banner=risk_level in ("high", "blocked"),
        show_confirm_button=risk_level != "blocked",
        show_reject_button=True,
        require_hold_to_confirm=risk_level == "high",
        banner_color="green" if risk_level == "low" else "yellow" if risk_level == "medium" else "red",
    )
