import re
from typing import Dict, Iterable, Optional

import yaml


class KnownSafeRegistry:
    """Read-only allow/deny lists with pre-built per-chain lookup sets."""

    def __init__(
        self,
        safe_contracts: Optional[Dict[int, Iterable[str]]] = None,
        drainers: Iterable[str] = (),
        safe_name_patterns: Iterable[str] = (),
    ):
        self._safe = {
            int(chain_id): frozenset(a.lower() for a in addresses or ())
            for chain_id, addresses in (safe_contracts or {}).items()
        }
        self._drainers = frozenset(a.lower() for a in drainers or ())
        self._name_patterns = tuple(re.compile(p, re.IGNORECASE) for p in safe_name_patterns or ())

    @classmethod
    def from_yaml(cls, path: str) -> "KnownSafeRegistry":
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            return cls(
                safe_contracts=data.get("known_safe") or {},
                drainers=data.get("drainers") or [],
                safe_name_patterns=data.get("safe_name_patterns") or [],
            )
        except Exception as e:
            raise RuntimeError(f"Failed to load known-safe registry from {path}: {e}")

    def is_known_safe(self, address: str, chain_id: int) -> bool:
        chain = self._safe.get(chain_id)
        if not chain or not address:
            return False
        return address.lower() in chain

    def is_known_drainer(self, address: str) -> bool:
        if not address:
            return False
        return address.lower() in self._drainers

    def matches_safe_contract_name(self, contract_name: Optional[str]) -> bool:
        if not contract_name:
            return False
        return any(p.match(contract_name) for p in self._name_patterns)
