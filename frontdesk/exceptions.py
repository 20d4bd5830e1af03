from __future__ import annotations


class SettlementError(Exception):
    """Base class for every front-desk booking/settlement failure."""


class ValidationError(SettlementError, ValueError):
    """
    A required identifier or amount is missing or invalid.
    Raised before anything is written.
    """


class ConflictError(SettlementError):
    """
    The request collides with the current state of a room or stay.

    ``alternatives`` carries the options for the guided flow
    (e.g. rooms the guest can be reassigned to).
    """

    def __init__(self, message: str, alternatives: list[dict] | None = None):
        super().__init__(message)
        self.alternatives = alternatives or []


class StateError(SettlementError):
    """Illegal lifecycle transition, or a mutation against a frozen booking."""


class ReconciliationMismatch(SettlementError):
    def __init__(self, computed: int, confirmed: int, resolved: int):
        super().__init__(
            f"Grand total mismatch: computed {computed}, confirmed {confirmed}; using {resolved}."
        )
        self.computed = computed
        self.confirmed = confirmed
        self.resolved = resolved


class TransportError(SettlementError):
    """Storage or connection failure; nothing was applied and the action can be retried."""
