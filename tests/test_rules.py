import itertools
import os

import pytest

from txguard.decoder import decode_transaction, MAX_UINT256
from txguard.known_safe import KnownSafeRegistry
from txguard.models import ThreatTag
from txguard.rules import (
    ThreatScorer, HeuristicWeights, HeuristicContext, map_to_tier, clamp_score, threat_summary,
)
from txguard.settings import RULES_DIR

WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
DRAINER = "0x" + "de" * 20
SPENDER = "0x" + "22" * 20
UNKNOWN = "0x" + "99" * 20
WALLET = "0x" + "11" * 20

APPROVE_MAX = "0x095ea7b3" + SPENDER[2:].rjust(64, "0") + format(MAX_UINT256, "064x")


def scorer(**weights):
    registry = KnownSafeRegistry({1: [WETH]}, drainers=[DRAINER], safe_name_patterns=["^(WETH|WrappedEther)"])
    return ThreatScorer(registry, HeuristicWeights(**weights))


def ctx(to=UNKNOWN, data="0x", value="0", verified=False, name=None, first=True, tx_usd=None, avg_usd=None):
    return HeuristicContext(
        chain_id=1,
        sender=WALLET,
        to=to,
        value=value,
        decoded=decode_transaction(data, value, to),
        is_verified=verified,
        contract_name=name,
        is_first_interaction=first,
        user_avg_tx_value_usd=avg_usd,
        tx_value_usd=tx_usd,
    )


def test_tier_mapping():
    assert map_to_tier(10) == "low"
    assert map_to_tier(30) == "medium"
    assert map_to_tier(59) == "medium"
    assert map_to_tier(60) == "high"


def test_clamp():
    assert clamp_score(-40) == 0
    assert clamp_score(140) == 100
    assert clamp_score(55) == 55


def test_drainer_recipient_overrides_everything():
    result = scorer().score(ctx(to=DRAINER, data=APPROVE_MAX, verified=True, name="WETH9", first=False))
    assert result.score == 100
    assert result.risk_level == "blocked"
    assert result.threat_tags == [ThreatTag.KNOWN_DRAINER]


def test_drainer_as_spender_is_blocked():
    data = "0x095ea7b3" + DRAINER[2:].rjust(64, "0") + format(5, "064x")
    assert scorer().score(ctx(to=WETH, data=data, verified=True)).risk_level == "blocked"


def test_unlimited_approval_to_unverified_contract():
    result = scorer().score(ctx(data=APPROVE_MAX))
    assert result.score == 90
    assert result.risk_level == "high"
    for tag in (ThreatTag.INFINITE_APPROVAL, ThreatTag.UNVERIFIED_CONTRACT,
                ThreatTag.FIRST_INTERACTION, ThreatTag.DRAIN_RISK):
        assert tag in result.threat_tags
    assert result.threat_summary.startswith("High risk:")


def test_known_safe_native_transfer_is_low():
    result = scorer().score(ctx(to=WETH, value="1000000000000000"))
    assert result.score == 0
    assert result.risk_level == "low"
    assert ThreatTag.UNVERIFIED_CONTRACT not in result.threat_tags


def test_value_anomaly_needs_both_figures():
    assert ThreatTag.LARGE_VALUE_ANOMALY in scorer().score(ctx(tx_usd=5000, avg_usd=100)).threat_tags
    assert ThreatTag.LARGE_VALUE_ANOMALY not in scorer().score(ctx(tx_usd=500, avg_usd=100)).threat_tags
    assert ThreatTag.LARGE_VALUE_ANOMALY not in scorer().score(ctx(tx_usd=5000)).threat_tags


def test_unknown_method_adds_points_without_tag():
    result = scorer().score(ctx(data="0x12345678", verified=True, first=False))
    assert result.score == 35
    assert result.threat_tags == []
    assert result.threat_summary == "No significant threats detected for this transaction."


def test_set_approval_for_all_revoke_is_not_flagged():
    grant = "0xa22cb465" + SPENDER[2:].rjust(64, "0") + format(1, "064x")
    revoke = "0xa22cb465" + SPENDER[2:].rjust(64, "0") + format(0, "064x")
    assert ThreatTag.INFINITE_APPROVAL in scorer().score(ctx(data=grant, verified=True)).threat_tags
    assert ThreatTag.INFINITE_APPROVAL not in scorer().score(ctx(data=revoke, verified=True)).threat_tags


def test_custom_weights():
    assert scorer(base_score=50).score(ctx(data="0x12345678", verified=True, first=False)).score == 65
    tags = scorer(anomaly_multiplier=100).score(ctx(tx_usd=5000, avg_usd=100)).threat_tags
    assert ThreatTag.LARGE_VALUE_ANOMALY not in tags


def test_score_always_in_range():
    usd_pairs = ((None, None), (1, 1000), (5000, 100), (10_000, 1), (0, 0))
    seen = {}
    for base in (-50, 0, 20, 90, 150):
        s = scorer(base_score=base)
        seen[base] = []
        for data, verified, first, to, (tx_usd, avg_usd) in itertools.product(
                ("0x", APPROVE_MAX, "0x12345678"), (True, False), (True, False), (WETH, UNKNOWN), usd_pairs):
            result = s.score(ctx(to=to, data=data, verified=verified, name="WETH9", first=first,
                                 tx_usd=tx_usd, avg_usd=avg_usd))
            assert 0 <= result.score <= 100
            seen[base].append(result.score)
    assert min(seen[-50]) == 0
    assert set(seen[150]) == {100}
    assert min(seen[20]) == 0 and max(seen[20]) > 60


def test_packaged_weights_match_defaults():
    assert HeuristicWeights.from_yaml(os.path.join(RULES_DIR, "heuristics.yaml")) == HeuristicWeights()


def test_unknown_weight_key_rejected(tmp_path):
    path = tmp_path / "weights.yaml"
    path.write_text("base_score: 10\nbogus: 3\n")
    with pytest.raises(RuntimeError):
        HeuristicWeights.from_yaml(str(path))


def test_threat_summary_tone():
    tags = [ThreatTag.UNVERIFIED_CONTRACT]
    assert threat_summary(tags, "medium") == "Moderate risk: unverified contract. Verify you trust this destination."
    assert threat_summary(tags, "low").endswith("Transaction appears safe.")
