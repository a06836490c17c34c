"""
Request orchestration: decode, gather evidence, score, explain, assemble.

Evidence clients are synchronous (``requests``); each call runs on the
default executor under its own deadline so one slow or failing source only
costs its own fallback value.
"""

import asyncio
import logging
import re
import time
from typing import Any, Callable, List, Optional, Tuple

from .decoder import decode_transaction, describe_transaction
from .dimensions import identity_analysis, effect_analysis, overall_verdict, ui_hints
from .errors import InvalidRequest
from .etherscan import (
    EtherscanClient, CONTRACT_REGISTRY, CONTRACT_CODE, CONTRACT_INFO_FALLBACK, IS_CONTRACT_FALLBACK,
)
from .explainer import Explainer, GeminiClient, EXPLAINER
from .feature_extractors import is_first_interaction, value_anomaly_inputs
from .known_safe import KnownSafeRegistry
from .models import (
    TransactionRequest, AIGuardResponse, OverallVerdict, Dimensions, OneDAnalysis, TwoDAnalysis,
    ThreeDAnalysis, LLMExplanation, UIHints, ThreatTag,
)
from .rules import ThreatScorer, HeuristicWeights, HeuristicContext
from .settings import Settings
from .simulator import TenderlyClient, SIMULATOR, simulation_fallback

logger = logging.getLogger(__name__)

ALL_SOURCES = [CONTRACT_REGISTRY, CONTRACT_CODE, SIMULATOR, EXPLAINER]
ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")

SENTINEL_ADDRESS = "0xdeadbeef00000000000000000000000000000000"
SENTINEL_DATA = "deadbeef"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def is_sentinel(request: TransactionRequest) -> bool:
    return request.to == SENTINEL_ADDRESS or SENTINEL_DATA in request.data


# ------------------------------------------------------------------
#  Fixed responses
# ------------------------------------------------------------------
def sentinel_response(started: float) -> AIGuardResponse:
    return AIGuardResponse(
        overall=OverallVerdict(
            risk_level="blocked", score=100, summary="CRITICAL: DRAINER DETECTED", action="block",
        ),
        dimensions=Dimensions(
            one_d=OneDAnalysis(
                title="CRITICAL SECURITY ALERT",
                risk_level="high",
                score=100,
                reasons=[
                    "Address associated with known wallet drainer",
                    "Contract source code unverified",
                ],
                labels=["phishing", "drainer", "high_risk"],
                is_verified=False,
                contract_name="Unknown (Malicious)",
            ),
            two_d=TwoDAnalysis(
                title="ASSET LOSS PREVENTED",
                risk_level="high",
                score=100,
                simulation_summary="CRITICAL: This transaction will EMPTY your wallet.",
                effects=[
                    "Requesting unlimited approval for ALL tokens",
                    "Hidden transfer to suspect address detected",
                ],
            ),
            three_d=ThreeDAnalysis(
                title="THREAT MODEL MATCH",
                risk_level="blocked",
                score=100,
                threat_summary="Signature matches a known wallet drainer pattern.",
                threat_tags=[ThreatTag.HONEY_POT, ThreatTag.DRAINER_SIGNATURE, ThreatTag.KNOWN_DRAINER],
            ),
        ),
        llm_explanation=LLMExplanation(
            short="STOP: This is a confirmed wallet drainer attempt.",
            detailed=("This transaction matches a known drainer pattern. The contract requests hidden "
                      "access to your assets. If you sign this, you will lose all funds."),
            recommendation="DO NOT SIGN. Close this DApp immediately.",
        ),
        ui_hints=ui_hints("blocked"),
        processing_time_ms=_elapsed_ms(started),
        timestamp=_now_ms(),
        degraded_sources=[],
    )


def caution_response(started: float) -> AIGuardResponse:
    """Neutral answer when the pipeline itself fails: never 'safe', never silent."""
    return AIGuardResponse(
        overall=OverallVerdict(
            risk_level="medium", score=50, summary="Unable to fully analyze transaction", action="warn",
        ),
        dimensions=Dimensions(
            one_d=OneDAnalysis(
                title="Who are you interacting with?",
                risk_level="medium",
                score=50,
                reasons=["Analysis incomplete - proceed with caution"],
                labels=["analysis_error"],
            ),
            two_d=TwoDAnalysis(
                title="What will this transaction do?",
                risk_level="medium",
                score=50,
                simulation_summary="Unable to simulate transaction",
                effects=["Review transaction details carefully"],
            ),
            three_d=ThreeDAnalysis(
                title="What could go wrong?",
                risk_level="medium",
                score=50,
                threat_summary="Unable to complete threat analysis",
            ),
        ),
        llm_explanation=LLMExplanation(
            short="Analysis incomplete - please review manually.",
            detailed=("An error occurred during analysis. The transaction may still be safe, "
                      "but we recommend extra caution."),
            recommendation="Proceed only if you trust this destination.",
        ),
        ui_hints=UIHints(
            show_red_banner=False,
            show_confirm_button=True,
            show_reject_button=True,
            require_hold_to_confirm=True,
            banner_color="yellow",
        ),
        processing_time_ms=_elapsed_ms(started),
        timestamp=_now_ms(),
        degraded_sources=list(ALL_SOURCES),
    )


# ------------------------------------------------------------------
#  Pipeline
# ------------------------------------------------------------------
class GuardPipeline:
    """
    Scores one transaction per ``analyze`` call.

    ``contracts`` must offer ``get_contract_info(address, chain_id)`` and
    ``is_contract(address, chain_id)``; ``simulator`` must offer
    ``simulate(chain_id, sender, to, value, data, gas)``. Either may be None,
    in which case its fallback is used and the source is reported degraded.
    """

    def __init__(self, registry: KnownSafeRegistry, weights: Optional[HeuristicWeights] = None,
                 contracts=None, simulator=None, explainer: Optional[Explainer] = None,
                 contract_lookup_timeout: float = 3.0, simulation_timeout: float = 5.0,
                 explanation_timeout: float = 2.0):
        self.registry = registry
        self.scorer = ThreatScorer(registry, weights)
        self.contracts = contracts
        self.simulator = simulator
        self.explainer = explainer or Explainer()
        self.contract_lookup_timeout = contract_lookup_timeout
        self.simulation_timeout = simulation_timeout
        self.explanation_timeout = explanation_timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "GuardPipeline":
        registry = KnownSafeRegistry.from_yaml(settings.known_safe_path)
        weights = HeuristicWeights.from_yaml(settings.heuristics_path)
        contracts = EtherscanClient(
            settings.etherscan_api_key,
            base_url=settings.etherscan_api_url,
            timeout=settings.contract_lookup_timeout,
        ) if settings.etherscan_api_key else None
        simulator = TenderlyClient(
            settings.tenderly_api_key,
            account=settings.tenderly_account,
            project=settings.tenderly_project,
            timeout=settings.simulation_timeout,
        ) if settings.tenderly_api_key else None
        gemini = GeminiClient(
            settings.gemini_api_key,
            model=settings.gemini_model,
            temperature=settings.gemini_temperature,
            max_output_tokens=settings.gemini_max_output_tokens,
        ) if settings.gemini_api_key else None
        return cls(
            registry,
            weights=weights,
            contracts=contracts,
            simulator=simulator,
            explainer=Explainer(gemini),
            contract_lookup_timeout=settings.contract_lookup_timeout,
            simulation_timeout=settings.simulation_timeout,
            explanation_timeout=settings.explanation_timeout,
        )

    def configured_sources(self) -> dict:
        return {
            CONTRACT_REGISTRY: self.contracts is not None,
            CONTRACT_CODE: self.contracts is not None,
            SIMULATOR: self.simulator is not None,
            EXPLAINER: self.explainer.client is not None,
        }

    # -------------------------------------------------
    # SOURCES
    # -------------------------------------------------
    async def _call_source(self, source: str, fn: Optional[Callable[..., Any]], args: tuple,
                           timeout: float, fallback: Any) -> Tuple[Any, bool]:
        """Run ``fn(*args)`` off-loop with a deadline; returns (value, degraded)."""
        if fn is None:
            logger.debug("%s not configured, using fallback", source)
            return fallback, True
        loop = asyncio.get_running_loop()
        try:
            value = await asyncio.wait_for(loop.run_in_executor(None, fn, *args), timeout=timeout)
            return value, False
        except asyncio.TimeoutError:
            logger.warning("%s timed out after %.1fs, using fallback", source, timeout)
        except Exception as e:
            logger.warning("%s unavailable (%s), using fallback", source, e)
        return fallback, True

    # -------------------------------------------------
    # ANALYSIS
    # -------------------------------------------------
    def _validate(self, request: TransactionRequest):
        for field, address in (("from", request.sender), ("to", request.to)):
            if not ADDRESS_RE.match(address):
                raise InvalidRequest(f"'{field}' is not a 20-byte hex address: {address!r}")

    async def analyze(self, request: TransactionRequest) -> AIGuardResponse:
        started = time.monotonic()
        self._validate(request)
        try:
            return await self._analyze(request, started)
        except InvalidRequest:
            raise
        except Exception:
            logger.exception("analysis failed for %s on chain %s", request.to, request.chain_id)
            return caution_response(started)

    async def _analyze(self, request: TransactionRequest, started: float) -> AIGuardResponse:
        decoded = decode_transaction(request.data, request.value, request.to)
        if is_sentinel(request):
            logger.warning("sentinel drainer pattern matched for %s", request.to)
            return sentinel_response(started)
        logger.debug("decoded %s (%s)", decoded.method, decoded.abi)

        contracts, simulator = self.contracts, self.simulator
        (contract, registry_down), (is_contract, code_down), (simulation, sim_down) = await asyncio.gather(
            self._call_source(
                CONTRACT_REGISTRY, contracts and contracts.get_contract_info,
                (request.to, request.chain_id), self.contract_lookup_timeout, CONTRACT_INFO_FALLBACK,
            ),
            self._call_source(
                CONTRACT_CODE, contracts and contracts.is_contract,
                (request.to, request.chain_id), self.contract_lookup_timeout, IS_CONTRACT_FALLBACK,
            ),
            self._call_source(
                SIMULATOR, simulator and simulator.simulate,
                (request.chain_id, request.sender, request.to, request.value, request.data, request.gas),
                self.simulation_timeout, simulation_fallback(),
            ),
        )
        degraded: List[str] = [
            source for source, down in (
                (CONTRACT_REGISTRY, registry_down), (CONTRACT_CODE, code_down), (SIMULATOR, sim_down),
            ) if down
        ]

        first = is_first_interaction(request.to, request.user_context)
        known_safe = self.registry.is_known_safe(request.to, request.chain_id)
        tiers = self.scorer.weights.tiers
        one_d = identity_analysis(is_contract, known_safe, contract, first, tiers=tiers)
        two_d = effect_analysis(simulation, decoded.method, decoded.params)

        tx_usd, avg_usd = value_anomaly_inputs(request.user_context)
        three_d = self.scorer.score(HeuristicContext(
            chain_id=request.chain_id,
            sender=request.sender,
            to=request.to,
            value=request.value,
            decoded=decoded,
            is_verified=contract.is_verified,
            contract_name=contract.contract_name,
            is_first_interaction=first,
            user_avg_tx_value_usd=avg_usd,
            tx_value_usd=tx_usd,
        ))

        overall = overall_verdict(one_d, two_d, three_d, describe_transaction(decoded, request.to), tiers=tiers)
        explanation, explainer_down = await self.explainer.explain(
            request, decoded, one_d, two_d, three_d, overall.score, timeout=self.explanation_timeout,
        )
        if explainer_down:
            degraded.append(EXPLAINER)

        response = AIGuardResponse(
            overall=overall,
            dimensions=Dimensions(one_d=one_d, two_d=two_d, three_d=three_d),
            llm_explanation=explanation,
            ui_hints=ui_hints(overall.risk_level),
            processing_time_ms=_elapsed_ms(started),
            timestamp=_now_ms(),
            degraded_sources=degraded,
        )
        logger.info("verdict %s score=%d action=%s in %dms degraded=%s",
                    overall.risk_level, overall.score, overall.action,
                    response.processing_time_ms, ",".join(degraded) or "-")
        return response
