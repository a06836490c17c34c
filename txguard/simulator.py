"""
Tenderly transaction simulator client.

Dry-runs a transaction and reports predicted balance changes and event logs.
Failures raise ``EvidenceUnavailable``; ``simulation_fallback`` is the
documented degraded-mode answer (assume success, no balance changes).
"""

import logging
from typing import Any, Dict, List, Optional

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import EvidenceUnavailable
from .models import BalanceChange, DecodedLog, SimulationLog, SimulationResult

logger = logging.getLogger(__name__)

SIMULATOR = "simulator"
DEFAULT_GAS_LIMIT = 8_000_000
NOMINAL_GAS = "21000"

CHAIN_TO_NETWORK = {
    1: "mainnet",
    10: "optimistic",
    8453: "base",
    42161: "arbitrum",
    84532: "base-sepolia",
    11155420: "optimistic-sepolia",
    11155111: "sepolia",
}


def simulation_fallback(gas: Optional[str] = None) -> SimulationResult:
    # Degraded-mode policy, not an assertion of safety.
    return SimulationResult(success=True, gas_used=gas or NOMINAL_GAS, balance_changes=[], logs=[])


# ------------------------------------------------------------------
#  Response shapes (only the fields we read)
# ------------------------------------------------------------------
class _Loose(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class TokenInfo(_Loose):
    contract_address: Optional[str] = None
    symbol: Optional[str] = None


class AssetChange(_Loose):
    type: Optional[str] = None
    sender: Optional[str] = Field(default=None, alias="from")
    to: Optional[str] = None
    amount: Optional[Any] = None
    raw_amount: Optional[Any] = None
    token_info: Optional[TokenInfo] = None


class RawLog(_Loose):
    address: Optional[str] = None
    topics: List[str] = Field(default_factory=list)
    data: Optional[str] = None


class LogInput(_Loose):
    name: Optional[str] = None
    soltype: Optional[Dict[str, Any]] = None
    value: Any = None

    @property
    def label(self) -> str:
        return self.name or (self.soltype or {}).get("name") or ""


class LogDecoded(_Loose):
    name: Optional[str] = None
    inputs: List[LogInput] = Field(default_factory=list)


class Log(_Loose):
    address: Optional[str] = None
    topics: List[str] = Field(default_factory=list)
    data: Optional[str] = None
    name: Optional[str] = None
    inputs: List[LogInput] = Field(default_factory=list)
    raw: Optional[RawLog] = None
    decoded: Optional[LogDecoded] = None


class TransactionInfo(_Loose):
    asset_changes: Optional[List[AssetChange]] = None
    logs: Optional[List[Log]] = None


class SimulatedTransaction(_Loose):
    status: Optional[bool] = None
    gas_used: Optional[int] = None
    error_message: Optional[str] = None
    logs: Optional[List[Log]] = None
    transaction_info: Optional[TransactionInfo] = None


class Simulation(_Loose):
    asset_changes: Optional[List[AssetChange]] = None


class SimulateResponse(_Loose):
    transaction: Optional[SimulatedTransaction] = None
    simulation: Optional[Simulation] = None


# ------------------------------------------------------------------
#  Client
# ------------------------------------------------------------------
def _gas_limit(gas: Optional[str]) -> int:
    if not gas:
        return DEFAULT_GAS_LIMIT
    try:
        return int(str(gas), 0)
    except ValueError:
        return DEFAULT_GAS_LIMIT


class TenderlyClient:
    def __init__(self, api_key: Optional[str], account: str = "me", project: str = "project",
                 timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.account = account
        self.project = project
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def url(self) -> str:
        return f"https://api.tenderly.co/api/v1/account/{self.account}/project/{self.project}/simulate"

    def simulate(self, chain_id: int, sender: str, to: str, value: str, data: str,
                 gas: Optional[str] = None) -> SimulationResult:
        if chain_id not in CHAIN_TO_NETWORK:
            raise EvidenceUnavailable(SIMULATOR, f"unsupported chain {chain_id}")
        if not self.api_key:
            raise EvidenceUnavailable(SIMULATOR, "TENDERLY_API_KEY not configured")

        body = {
            "network_id": str(chain_id),
            "from": sender,
            "to": to,
            "value": value or "0",
            "input": data or "0x",
            "gas": _gas_limit(gas),
            "gas_price": "0",
            "save": False,
            "save_if_fails": False,
            "simulation_type": "quick",
        }
        headers = {"Content-Type": "application/json", "X-Access-Key": self.api_key}
        try:
            r = self.session.post(self.url, json=body, headers=headers, timeout=self.timeout)
            r.raise_for_status()
            payload = r.json()
        except requests.RequestException as e:
            raise EvidenceUnavailable(SIMULATOR, f"request failed: {e}") from e
        except ValueError as e:
            raise EvidenceUnavailable(SIMULATOR, "response is not JSON") from e

        return parse_simulation(payload, wallet=sender)


def parse_simulation(payload: Any, wallet: str) -> SimulationResult:
    """Map a Tenderly response onto ``SimulationResult``.

    A balance change counts as incoming when its recipient is the wallet
    under analysis.
    """
    try:
        parsed = SimulateResponse.model_validate(payload)
    except ValidationError as e:
        raise EvidenceUnavailable(SIMULATOR, f"malformed response: {e.error_count()} error(s)") from e

    tx, sim = parsed.transaction, parsed.simulation
    if tx is None or sim is None:
        raise EvidenceUnavailable(SIMULATOR, "response is missing transaction or simulation")

    info = tx.transaction_info or TransactionInfo()
    changes = sim.asset_changes if sim.asset_changes is not None else (info.asset_changes or [])
    raw_logs = tx.logs if tx.logs is not None else (info.logs or [])

    wallet = (wallet or "").lower()
    balance_changes = []
    for change in changes:
        token = change.token_info or TokenInfo()
        balance_changes.append(BalanceChange(
            token=token.contract_address or "ETH",
            symbol=token.symbol or "ETH",
            delta=str(change.amount if change.amount is not None else "0"),
            is_increase=bool(change.to) and change.to.lower() == wallet,
        ))

    success = tx.status is True
    logger.debug("simulation status=%s gas=%s changes=%d", tx.status, tx.gas_used, len(balance_changes))
    return SimulationResult(
        success=success,
        gas_used=str(tx.gas_used if tx.gas_used is not None else 0),
        balance_changes=balance_changes,
        logs=[_to_log(log) for log in raw_logs],
        error=None if success else (tx.error_message or "Unknown error"),
    )


def _to_log(log: Log) -> SimulationLog:
    raw = log.raw or RawLog(address=log.address, topics=log.topics, data=log.data)
    name = log.name or (log.decoded.name if log.decoded else None)
    inputs = log.inputs or (log.decoded.inputs if log.decoded else [])
    decoded = None
    if name:
        decoded = DecodedLog(name=name, params={i.label: i.value for i in inputs if i.label})
    return SimulationLog(
        address=(raw.address or "").lower(),
        topics=raw.topics,
        data=raw.data or "0x",
        decoded=decoded,
    )
