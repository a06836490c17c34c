"""
Runtime configuration.

Values come from the process environment (optionally seeded from a ``.env``
file by the web entrypoint). Nothing here is mutated after startup.
"""

import os
from dataclasses import dataclass
from typing import Optional

RULES_DIR = os.path.join(os.path.dirname(__file__), "rules")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    etherscan_api_key: Optional[str] = None
    etherscan_api_url: str = "https://api.etherscan.io/v2/api"

    tenderly_api_key: Optional[str] = None
    tenderly_account: str = "me"
    tenderly_project: str = "project"

    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"
    gemini_temperature: float = 0.3
    gemini_max_output_tokens: int = 500

    # per-call deadlines, seconds
    contract_lookup_timeout: float = 3.0
    simulation_timeout: float = 5.0
    explanation_timeout: float = 2.0

    known_safe_path: str = os.path.join(RULES_DIR, "known_safe.yaml")
    heuristics_path: str = os.path.join(RULES_DIR, "heuristics.yaml")

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            etherscan_api_key=os.getenv("ETHERSCAN_API_KEY") or None,
            etherscan_api_url=os.getenv("ETHERSCAN_API_URL", cls.etherscan_api_url),
            tenderly_api_key=os.getenv("TENDERLY_API_KEY") or None,
            tenderly_account=os.getenv("TENDERLY_ACCOUNT", cls.tenderly_account),
            tenderly_project=os.getenv("TENDERLY_PROJECT", cls.tenderly_project),
            gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
            gemini_model=os.getenv("GEMINI_MODEL", cls.gemini_model),
            gemini_temperature=_env_float("GEMINI_TEMPERATURE", cls.gemini_temperature),
            gemini_max_output_tokens=int(_env_float("GEMINI_MAX_OUTPUT_TOKENS", cls.gemini_max_output_tokens)),
            contract_lookup_timeout=_env_float("CONTRACT_LOOKUP_TIMEOUT", cls.contract_lookup_timeout),
            simulation_timeout=_env_float("SIMULATION_TIMEOUT", cls.simulation_timeout),
            explanation_timeout=_env_float("EXPLANATION_TIMEOUT", cls.explanation_timeout),
            known_safe_path=os.getenv("KNOWN_SAFE_PATH", cls.known_safe_path),
            heuristics_path=os.getenv("HEURISTICS_PATH", cls.heuristics_path),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
        )
