from txguard.dimensions import (
    identity_analysis, effect_analysis, overall_verdict, ui_hints, average_score,
)
from txguard.models import (
    ContractInfo, BalanceChange, SimulationResult, OneDAnalysis, TwoDAnalysis, ThreeDAnalysis,
)
from txguard.simulator import simulation_fallback

UNVERIFIED = ContractInfo()


def dims(one, two, three, three_level=None):
    return (
        OneDAnalysis(title="1D", risk_level="low", score=one),
        TwoDAnalysis(title="2D", risk_level="low", score=two, simulation_summary="-"),
        ThreeDAnalysis(title="3D", risk_level=three_level or "low", score=three, threat_summary="-"),
    )


def test_identity_eoa():
    one_d = identity_analysis(False, False, UNVERIFIED, True)
    assert one_d.score == 10
    assert one_d.risk_level == "low"
    assert one_d.labels == ["eoa"]


def test_identity_unverified_contract_first_time():
    one_d = identity_analysis(True, False, UNVERIFIED, True)
    assert one_d.score == 80
    assert one_d.risk_level == "high"
    assert one_d.labels == ["unverified_contract", "first_interaction"]


def test_identity_known_safe_and_verified():
    info = ContractInfo(is_verified=True, contract_name="WETH9")
    assert identity_analysis(True, True, info, True).score == 25
    verified = identity_analysis(True, False, info, False)
    assert verified.score == 30
    assert verified.risk_level == "medium"
    assert verified.contract_name == "WETH9"


def test_identity_proxy_is_reported():
    info = ContractInfo(is_verified=True, contract_name="Proxy", is_proxy=True, implementation="0x" + "ab" * 20)
    one_d = identity_analysis(True, False, info, False)
    assert one_d.is_proxy
    assert any("proxy" in r for r in one_d.reasons)


def test_effect_nominal_simulation_reads_low():
    two_d = effect_analysis(simulation_fallback(), "approve", {})
    assert two_d.score == 30
    assert two_d.risk_level == "low"
    assert "No tokens move immediately" in two_d.effects
    assert two_d.simulation_summary == "Transaction simulated successfully. No token transfers detected."


def test_effect_failed_simulation():
    sim = SimulationResult(success=False, gas_used="0", error="execution reverted")
    two_d = effect_analysis(sim, "transfer", {})
    assert two_d.score == 70
    assert two_d.risk_level == "high"
    assert two_d.effects[-1] == "Simulation failed: execution reverted"


def test_effect_balance_changes():
    sim = SimulationResult(success=True, gas_used="52000", balance_changes=[
        BalanceChange(token="ETH", symbol="ETH", delta="1.5", is_increase=True),
        BalanceChange(token="0x" + "33" * 20, symbol="USDC", delta="3000", is_increase=False),
    ])
    two_d = effect_analysis(sim, "swapExactETHForTokens", {})
    assert two_d.effects[:2] == ["You will receive 1.5 ETH", "You will send 3000 USDC"]
    assert "Tokens will be exchanged via DEX" in two_d.effects
    assert two_d.simulation_summary == "Expected balance changes: +1.5 ETH, -3000 USDC"


def test_effect_unknown_method_default_text():
    two_d = effect_analysis(simulation_fallback(), "unknown", {})
    assert two_d.effects == ["Contract interaction will modify state", "Review carefully before proceeding"]


def test_average_rounds_half_up():
    assert average_score(10, 30, 0) == 13
    assert average_score(1, 2, 2) == 2
    assert average_score(100, 100, 100) == 100


def test_overall_levels_and_actions():
    low = overall_verdict(*dims(10, 30, 0), summary="s")
    assert (low.risk_level, low.score, low.action) == ("low", 13, "allow")
    medium = overall_verdict(*dims(40, 30, 50), summary="s")
    assert (medium.risk_level, medium.action) == ("medium", "allow")
    high = overall_verdict(*dims(80, 70, 90), summary="s")
    assert (high.risk_level, high.action) == ("high", "warn")


def test_blocked_threat_overrides_average():
    verdict = overall_verdict(*dims(10, 30, 100, three_level="blocked"), summary="s")
    assert verdict.risk_level == "blocked"
    assert verdict.action == "block"


def test_ui_hints():
    assert ui_hints("low").banner_color == "green"
    assert ui_hints("medium").banner_color == "yellow"
    high = ui_hints("high")
    assert high.show_red_banner and high.require_hold_to_confirm and high.show_confirm_button
    blocked = ui_hints("blocked")
    assert blocked.show_red_banner and not blocked.show_confirm_button and blocked.show_reject_button
    assert blocked.banner_color == "red"


def test_native_transfer_effects():
    two_d = effect_analysis(simulation_fallback(), "native_transfer", {})
    assert two_d.effects == ["ETH will be transferred immediately", "This action cannot be reversed"]


def test_custom_tier_bands():
    bands = [("low", 10), ("medium", 20)]
    info = ContractInfo(is_verified=True, contract_name="WETH9")
    assert identity_analysis(True, True, info, True, tiers=bands).risk_level == "high"
    assert overall_verdict(*dims(10, 30, 0), summary="s", tiers=bands).risk_level == "medium"
