class GuardError(Exception):
    """Base class for transaction guard errors."""


class InvalidRequest(GuardError):
    """Client supplied an unusable request. Surfaces as HTTP 400."""


class EvidenceUnavailable(GuardError):
    """An evidence source could not answer (unsupported chain, no key, transport or payload error)."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class ExplanationUnavailable(GuardError):
    """The language model produced nothing usable."""
