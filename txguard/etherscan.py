"""
Etherscan-compatible contract registry client.

Answers two questions about a destination address: is it verified (and what
is it called), and does it carry code at all. Both calls raise
``EvidenceUnavailable`` on any failure; choosing the fallback is the
caller's job.
"""

import logging
from typing import Any, Dict, List, Optional, Union

import requests
from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import EvidenceUnavailable
from .models import ContractInfo

logger = logging.getLogger(__name__)

CONTRACT_REGISTRY = "contract_registry"
CONTRACT_CODE = "contract_code"

# chains served by the Etherscan v2 multichain endpoint
SUPPORTED_CHAINS = {
    1,          # Ethereum
    10,         # Optimism
    8453,       # Base
    42161,      # Arbitrum One
    84532,      # Base Sepolia
    11155420,   # Optimism Sepolia
    421614,     # Arbitrum Sepolia
    11155111,   # Sepolia
}

CONTRACT_INFO_FALLBACK = ContractInfo(
    is_verified=False,
    contract_name=None,
    compiler_version=None,
    is_proxy=False,
)
# without a code check the destination is treated as an unverified contract,
# never as the lower-risk EOA category
IS_CONTRACT_FALLBACK = True


class SourceCodeRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    SourceCode: str = ""
    ContractName: str = ""
    CompilerVersion: str = ""
    Proxy: str = "0"
    Implementation: str = ""


class SourceCodeResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str = "0"
    message: str = ""
    # errors come back as a plain string in ``result``
    result: Union[List[SourceCodeRecord], str] = ""


class GetCodeResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    result: Optional[str] = None
    error: Optional[Dict[str, Any]] = None


class EtherscanClient:
    """Read-only client for the contract and proxy modules of the Etherscan API."""

    def __init__(self, api_key: Optional[str], base_url: str = "https://api.etherscan.io/v2/api",
                 timeout: float = 3.0, session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.session = session or requests.Session()

    # -------------------------------------------------
    # TRANSPORT
    # -------------------------------------------------
    def _get(self, source: str, chain_id: int, params: Dict[str, Any]) -> Any:
        if chain_id not in SUPPORTED_CHAINS:
            raise EvidenceUnavailable(source, f"unsupported chain {chain_id}")
        if not self.api_key:
            raise EvidenceUnavailable(source, "ETHERSCAN_API_KEY not configured")

        query = {"chainid": chain_id, **params, "apikey": self.api_key}
        try:
            r = self.session.get(self.base_url, params=query, timeout=self.timeout)
            r.raise_for_status()
            return r.json()
        except requests.RequestException as e:
            raise EvidenceUnavailable(source, f"request failed: {e}") from e
        except ValueError as e:
            raise EvidenceUnavailable(source, "response is not JSON") from e

    # -------------------------------------------------
    # CONTRACT INFO
    # -------------------------------------------------
    def get_contract_info(self, address: str, chain_id: int) -> ContractInfo:
        payload = self._get(CONTRACT_REGISTRY, chain_id, {
            "module": "contract",
            "action": "getsourcecode",
            "address": address,
        })
        try:
            parsed = SourceCodeResponse.model_validate(payload)
        except ValidationError as e:
            raise EvidenceUnavailable(CONTRACT_REGISTRY, f"malformed response: {e.error_count()} error(s)") from e

        if parsed.status != "1" or not isinstance(parsed.result, list) or not parsed.result:
            detail = parsed.result if isinstance(parsed.result, str) else parsed.message
            raise EvidenceUnavailable(CONTRACT_REGISTRY, f"lookup rejected: {detail or 'empty result'}")

        record = parsed.result[0]
        name = record.ContractName or None
        logger.debug("getsourcecode %s on chain %s: verified=%s name=%s",
                     address, chain_id, bool(record.SourceCode), name)
        return ContractInfo(
            is_verified=bool(record.SourceCode),
            contract_name=name,
            compiler_version=record.CompilerVersion or None,
            is_proxy=(record.Proxy == "1"
                      or bool(record.Implementation)
                      or (name is not None and "proxy" in name.lower())),
            implementation=record.Implementation or None,
        )

    # -------------------------------------------------
    # CODE CHECK
    # -------------------------------------------------
    def is_contract(self, address: str, chain_id: int) -> bool:
        payload = self._get(CONTRACT_CODE, chain_id, {
            "module": "proxy",
            "action": "eth_getCode",
            "address": address,
            "tag": "latest",
        })
        try:
            parsed = GetCodeResponse.model_validate(payload)
        except ValidationError as e:
            raise EvidenceUnavailable(CONTRACT_CODE, f"malformed response: {e.error_count()} error(s)") from e

        code = parsed.result
        if parsed.error or not isinstance(code, str) or not code.startswith("0x"):
            raise EvidenceUnavailable(CONTRACT_CODE, f"unexpected result: {code!r}")
        return code not in ("0x", "0x0")
