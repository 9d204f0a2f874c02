"""
Error classes for shiprun reconciliation.

These error types drive requeue classification at the reconciler boundary:
- TransientError: Safe to retry (store I/O failures, timeouts, rate limits)
- ConflictError: Optimistic-concurrency mismatch; re-read and recompute
- DependencyNotFoundError: Referenced Build missing; retried for a grace period
- PermanentError: Do not retry (the Run itself is invalid)

Error handling contract:
- Store and tracker operations raise, they never return error values
- The only "error as value" is the validator's ValidationResult
- The reconciler catches at the boundary and converts to requeue or status
"""


class ShiprunError(Exception):
    """Base exception for shiprun."""
    pass


class TransientError(ShiprunError):
    """
    Transient error - safe to retry.

    Examples:
    - Store unreachable or I/O failure
    - Per-attempt reconciliation deadline exceeded
    - Rate limiting

    The work queue requeues the key with capped exponential backoff.
    """
    pass


class ConflictError(TransientError):
    """
    Optimistic-concurrency conflict.

    Raised when an update carries a stale resourceVersion, the object vanished
    between read and write, or a concurrent create won the race. The caller
    re-fetches and treats the stored object as authoritative.
    """
    pass


class AlreadyExistsError(ConflictError):
    """Raised by create() when an object with the same identity exists."""

    def __init__(self, kind: str, namespace: str, name: str):
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(f"{kind} {namespace}/{name} already exists")


class DependencyNotFoundError(TransientError):
    """
    A referenced build definition does not exist yet.

    Tolerated for a bounded grace period to allow out-of-order creation, then
    escalated to a terminal rejection by the reconciler.
    """

    def __init__(self, kind: str, namespace: str, name: str):
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(f"{kind} {namespace}/{name} not found")


class PermanentError(ShiprunError):
    """
    Permanent error - do not retry.

    Examples:
    - Run spec violates the accepted grammar
    - Embedded build spec cannot be deserialized
    """
    pass


class ValidationError(PermanentError):
    """
    The Run spec is outside the accepted grammar.

    Carries every independent violation so the combined message can be
    surfaced to the pipeline author in one condition.
    """

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))
