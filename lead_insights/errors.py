"""
Scoring error taxonomy.

`retryable` tells the recalculation service whether to requeue with backoff
(True) or drop/dead-letter immediately (False). Factor-level errors never
leave the engine; they become confidence-0 fallbacks.
"""


class ScoringError(Exception):
    """Base class for all engine errors."""
    retryable = False


class ValidationError(ScoringError):
    """Malformed trigger payload or config — dropped, never retried."""


class NotFoundError(ScoringError):
    """Lead or activity missing for the tenant — dropped after logging."""
    def __init__(self, kind, identifier):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} '{identifier}' not found")


class TenantMismatchError(ScoringError):
    """Caller's organization does not own the lead — surfaced, never retried."""
    def __init__(self, lead_id, organization_id):
        self.lead_id = lead_id
        self.organization_id = organization_id
        super().__init__(f"Lead '{lead_id}' does not belong to organization '{organization_id}'")


class ScorerTimeoutError(ScoringError):
    """A single factor scorer exceeded its budget. Absorbed by the engine."""
    def __init__(self, factor, budget_ms):
        self.factor = factor
        self.budget_ms = budget_ms
        super().__init__(f"Scorer '{factor}' timed out after {budget_ms} ms")


class RecomputeTimeoutError(ScoringError):
    """The whole recomputation exceeded its budget."""
    retryable = True

    def __init__(self, lead_id, budget_ms):
        self.lead_id = lead_id
        self.budget_ms = budget_ms
        super().__init__(f"Recomputation for lead '{lead_id}' exceeded {budget_ms} ms")


class PersistenceError(ScoringError):
    """History append or cache update failed; the transaction was rolled back."""
    retryable = True


class LockUnavailableError(ScoringError):
    """Per-lead lock not acquired within the bounded wait."""
    retryable = True

    def __init__(self, lead_id, waited):
        self.lead_id = lead_id
        self.waited = waited
        super().__init__(f"Lock for lead '{lead_id}' not acquired within {waited}s")
