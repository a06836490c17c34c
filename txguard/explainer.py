"""
Natural-language explanation of a verdict.

The language model is a best-effort enhancement: any failure (no key,
timeout, transport error, empty or unparseable output) ends in the
deterministic ``fallback_explanation`` so a response always carries text.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Tuple

import google.generativeai as genai

from .errors import ExplanationUnavailable
from .models import (
    TransactionRequest, DecodedTransaction, OneDAnalysis, TwoDAnalysis, ThreeDAnalysis,
    LLMExplanation, ThreatTag,
)

logger = logging.getLogger(__name__)

EXPLAINER = "explainer"

DEFAULT_SHORT = "Transaction analysis complete."
DEFAULT_DETAILED = "Review the security analysis above before proceeding."
RAW_SHORT_CHARS = 100
RAW_DETAILED_CHARS = 300

RECOMMENDATIONS = {
    "low": "Safe to proceed.",
    "medium": "Proceed with caution. Verify you trust the destination.",
    "high": "High risk - only proceed if you absolutely trust this dApp.",
    "blocked": "BLOCKED - this transaction appears malicious.",
}


def default_recommendation(risk_level: str) -> str:
    return RECOMMENDATIONS.get(risk_level, "Review carefully before proceeding.")


# ------------------------------------------------------------------
#  Gemini client
# ------------------------------------------------------------------
class GeminiClient:
    """Thin synchronous wrapper over ``google.generativeai``."""

    def __init__(self, api_key: Optional[str], model: str = "gemini-2.5-flash",
                 temperature: float = 0.3, max_output_tokens: int = 500):
        self.api_key = api_key
        self.model_name = model
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self._model = None

    def _get_model(self):
        if self._model is None:
            genai.configure(api_key=self.api_key)
            self._model = genai.GenerativeModel(
                self.model_name,
                generation_config={
                    "temperature": self.temperature,
                    "max_output_tokens": self.max_output_tokens,
                    "candidate_count": 1,
                },
            )
        return self._model

    def generate(self, prompt: str, timeout: float) -> str:
        if not self.api_key:
            raise ExplanationUnavailable("GEMINI_API_KEY not configured")
        resp = self._get_model().generate_content(prompt, request_options={"timeout": timeout})
        try:
            text = (resp.text or "").strip()
        except ValueError as e:
            # blocked or empty candidates make ``.text`` raise
            raise ExplanationUnavailable(f"no usable candidate: {e}") from e
        if not text:
            raise ExplanationUnavailable("empty response")
        return text


# ------------------------------------------------------------------
#  Prompt
# ------------------------------------------------------------------
PROMPT_TEMPLATE = """You are a transaction security assistant for a self-custody wallet.
Explain Ethereum transactions in simple, clear language and highlight potential risks.

TRANSACTION CONTEXT:
- Chain ID: {chain_id}
- From: {sender}
- To: {to}
- Value: {value} wei
- Method: {method}
- Parameters: {params}
- Contract verified: {verified}
{contract_line}
ANALYSIS RESULTS:
1D (Identity): {identity}
2D (Simulation): {simulation}
3D (Threats): {threats}
Threat Score: {threat_score}/100
Overall Score: {overall_score}/100

TASK:
Write an explanation in THREE parts:
1. SHORT (1 sentence, under 20 words): what this transaction does in plain English.
2. DETAILED (2-3 sentences): what happens when the user signs, and any red flags.
3. RECOMMENDATION (1 sentence): proceed, be cautious, or reject.

OUTPUT FORMAT (JSON only, no markdown):
{{"short":"...","detailed":"...","recommendation":"..."}}
"""


def build_prompt(request: TransactionRequest, decoded: DecodedTransaction, one_d: OneDAnalysis,
                 two_d: TwoDAnalysis, three_d: ThreeDAnalysis, overall_score: int) -> str:
    contract_line = f"- Contract name: {one_d.contract_name}\n" if one_d.contract_name else ""
    return PROMPT_TEMPLATE.format(
        chain_id=request.chain_id,
        sender=request.sender,
        to=request.to,
        value=request.value,
        method=decoded.method,
        params=json.dumps(decoded.params, indent=2, default=str),
        verified="Yes" if one_d.is_verified else "No",
        contract_line=contract_line,
        identity="; ".join(one_d.reasons),
        simulation=two_d.simulation_summary,
        threats=", ".join(t.value for t in three_d.threat_tags) or "None detected",
        threat_score=three_d.score,
        overall_score=overall_score,
    )


# ------------------------------------------------------------------
#  Parsing
# ------------------------------------------------------------------
def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Return the first JSON object embedded anywhere in ``text``."""
    decoder = json.JSONDecoder()
    idx = text.find("{")
    while idx != -1:
        try:
            obj, _ = decoder.raw_decode(text, idx)
        except ValueError:
            obj = None
        if isinstance(obj, dict):
            return obj
        idx = text.find("{", idx + 1)
    return None


def _field(obj: Dict[str, Any], key: str) -> Optional[str]:
    value = obj.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_response(text: str, risk_level: str) -> LLMExplanation:
    obj = extract_json_object(text)
    if obj is not None:
        return LLMExplanation(
            short=_field(obj, "short") or DEFAULT_SHORT,
            detailed=_field(obj, "detailed") or DEFAULT_DETAILED,
            recommendation=_field(obj, "recommendation") or default_recommendation(risk_level),
        )

    logger.debug("model output had no JSON object, using raw text")
    text = text.strip()
    return LLMExplanation(
        short=text[:RAW_SHORT_CHARS] or DEFAULT_SHORT,
        detailed=text[:RAW_DETAILED_CHARS] or DEFAULT_DETAILED,
        recommendation=default_recommendation(risk_level),
    )


# ------------------------------------------------------------------
#  Deterministic fallback
# ------------------------------------------------------------------
def _short_text(decoded: DecodedTransaction) -> str:
    method, params = decoded.method, decoded.params
    if method == "native_transfer":
        return f"Sending {params.get('value', '0')} ETH to destination address."
    if method == "transfer":
        return "Transferring tokens to destination address."
    if method in ("transferFrom", "safeTransferFrom"):
        return "Moving tokens from one address to another on your behalf."
    if method == "approve":
        if params.get("isUnlimited"):
            return "Approving unlimited token spending to contract."
        return "Approving token spending allowance to contract."
    if method == "setApprovalForAll":
        if params.get("approved"):
            return "Granting NFT operator permissions."
        return "Revoking NFT operator permissions."
    if "swap" in method.lower() or method.startswith("exact"):
        return "Swapping tokens through a decentralized exchange."
    if method == "unknown":
        return f"Calling an unrecognized contract method ({decoded.method_id or 'no selector'})."
    return f"Contract interaction: {method}"


def _detailed_text(decoded: DecodedTransaction, three_d: ThreeDAnalysis) -> str:
    tags = set(three_d.threat_tags)
    if ThreatTag.KNOWN_DRAINER in tags:
        return ("This address is on a list of known malicious drainer contracts. "
                "Signing would put the assets it touches at immediate risk.")
    if ThreatTag.INFINITE_APPROVAL in tags and ThreatTag.UNVERIFIED_CONTRACT in tags:
        return ("This grants unlimited spending permission to an unverified contract. "
                "If malicious, this contract could drain all tokens of this type from your wallet. "
                "The contract source code is not publicly verified.")
    if ThreatTag.INFINITE_APPROVAL in tags:
        return ("This grants unlimited spending permission. While the contract appears legitimate, "
                "you should only approve what you need. You can always revoke this permission later.")
    if ThreatTag.UNVERIFIED_CONTRACT in tags:
        return ("This interacts with an unverified contract. The source code is not publicly available, "
                "so we cannot confirm what this contract does. Proceed with caution.")
    if decoded.is_native_transfer:
        return ("This is a simple ETH transfer. Your balance will decrease by the specified amount. "
                "This action cannot be reversed.")
    return ("Review the transaction details above before signing. "
            "Make sure you understand what this transaction does.")


def fallback_explanation(decoded: DecodedTransaction, three_d: ThreeDAnalysis) -> LLMExplanation:
    return LLMExplanation(
        short=_short_text(decoded),
        detailed=_detailed_text(decoded, three_d),
        recommendation=default_recommendation(three_d.risk_level),
    )


# ------------------------------------------------------------------
#  Async facade
# ------------------------------------------------------------------
class Explainer:
    def __init__(self, client: Optional[GeminiClient] = None):
        self.client = client

    async def explain(self, request: TransactionRequest, decoded: DecodedTransaction,
                      one_d: OneDAnalysis, two_d: TwoDAnalysis, three_d: ThreeDAnalysis,
                      overall_score: int, timeout: float = 2.0) -> Tuple[LLMExplanation, bool]:
        """Return (explanation, used_fallback)."""
        if self.client is None:
            return fallback_explanation(decoded, three_d), True

        prompt = build_prompt(request, decoded, one_d, two_d, three_d, overall_score)
        loop = asyncio.get_running_loop()
        try:
            text = await asyncio.wait_for(
                loop.run_in_executor(None, self.client.generate, prompt, timeout),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("%s timed out after %.1fs, using fallback text", EXPLAINER, timeout)
            return fallback_explanation(decoded, three_d), True
        except Exception as e:
            logger.warning("%s failed (%s), using fallback text", EXPLAINER, e)
            return fallback_explanation(decoded, three_d), True

        return parse_response(text, three_d.risk_level), False
