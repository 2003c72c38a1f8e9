"""Exceptions raised by the settlement core.

Expected business failures are reported through result objects; these
exceptions cover programming errors and infrastructure failures only.
"""


class SettlementError(Exception):
    """Base class for settlement exceptions."""


class InvalidStateTransitionError(SettlementError):
    """Raised when a status change is not allowed by the transition table."""

    def __init__(self, entity: str, current: str, target: str):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"Illegal {entity} status transition: {current} -> {target}")


class PaymentProviderError(SettlementError):
    """Raised by provider adapters on transport or serialization failures."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider} request failed: {message}")
