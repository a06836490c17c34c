from typing import Iterable, Optional, Tuple

from .models import UserContext


def contains_address(addresses: Optional[Iterable[str]], address: str) -> bool:
    if not addresses or not address:
        return False
    target = address.lower()
    return any(isinstance(a, str) and a.lower() == target for a in addresses)


def is_first_interaction(to: str, user_context: Optional[UserContext]) -> bool:
    # Without a contact list we cannot prove prior contact, so assume none.
    if user_context is None or user_context.known_contacts is None:
        return True
    return not contains_address(user_context.known_contacts, to)


def value_anomaly_inputs(user_context: Optional[UserContext]) -> Tuple[Optional[float], Optional[float]]:
    """Return (tx_value_usd, avg_tx_value_usd) when the caller supplied them."""
    if user_context is None:
        return None, None
    return user_context.tx_value_usd, user_context.avg_tx_value_usd
