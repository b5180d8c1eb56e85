"""
Custom exceptions and error handling for the Brokerage Graph core.

Provides:
- Typed exception hierarchy for store, notification and pipeline failures
- Error context preservation for debugging
- Partial success handling for batch operations (matching notifications)
"""

from dataclasses import dataclass, field
from typing import Any


class BrokerageGraphError(Exception):
    """Base exception for all brokerage graph errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} | context={self.context}"
        return self.message


# =============================================================================
# Client Errors
# =============================================================================


class ClientError(BrokerageGraphError):
    """Base class for collaborator (store, notifier) errors."""

    pass


class StoreError(ClientError):
    """Error from the entity store backend."""

    pass


class StoreReadError(StoreError):
    """Failed to load or decode a collection."""

    pass


class StoreWriteError(StoreError):
    """Failed to persist a collection."""

    pass


class NotificationError(ClientError):
    """Notification could not be delivered."""

    pass


# =============================================================================
# Pipeline Errors
# =============================================================================


class PipelineError(BrokerageGraphError):
    """Base class for pipeline-related errors."""

    pass


class ValidationError(PipelineError):
    """Input validation failed. Raised before any mutation."""

    pass


class CycleNotSharedError(ValidationError):
    """Cross-agent offer submitted against a cycle that is not shared."""

    pass


class NotFoundError(PipelineError):
    """A referenced entity does not exist."""

    pass


class OfferStateError(PipelineError):
    """Offer or cycle is not in a state that allows the requested transition."""

    pass


class AcceptanceError(PipelineError):
    """Downstream work (purchase cycle / deal) failed while accepting an offer."""

    pass


class RollbackError(AcceptanceError):
    """Acceptance failed and the snapshot could not be restored; the store needs repair."""

    pass


class DealIntegrityError(PipelineError):
    """Deal identity or numbering would be violated."""

    pass


class MatchingError(PipelineError):
    """Error during a matching run."""

    pass


# =============================================================================
# Partial Success Handling
# =============================================================================


@dataclass
class ItemResult:
    """Result for a single item in a batch operation."""

    item_id: str | None
    success: bool
    error: BrokerageGraphError | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class PartialSuccessResult:
    """
    Result of a batch operation that may partially succeed.

    Allows processing to continue even when some items fail,
    while preserving error context for debugging.
    """

    succeeded: list[ItemResult] = field(default_factory=list)
    failed: list[ItemResult] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    @property
    def total_count(self) -> int:
        return self.success_count + self.failure_count

    @property
    def all_succeeded(self) -> bool:
        return self.failure_count == 0

    @property
    def partial_success(self) -> bool:
        return self.success_count > 0 and self.failure_count > 0

    def add_success(
        self,
        item_id: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        """Record a successful item."""
        self.succeeded.append(ItemResult(item_id=item_id, success=True, data=data or {}))

    def add_failure(
        self,
        error: BrokerageGraphError,
        item_id: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        """Record a failed item."""
        self.failed.append(
            ItemResult(item_id=item_id, success=False, error=error, data=data or {})
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            'success_count': self.success_count,
            'failure_count': self.failure_count,
            'total_count': self.total_count,
            'all_succeeded': self.all_succeeded,
            'succeeded_ids': [r.item_id for r in self.succeeded if r.item_id],
            'failed_ids': [r.item_id for r in self.failed if r.item_id],
            'errors': [
                {'item_id': r.item_id, 'error': str(r.error)}
                for r in self.failed
                if r.error
            ],
        }


# =============================================================================
# Error Handling Utilities
# =============================================================================


def wrap_store_error(
    exc: Exception,
    context: dict[str, Any] | None = None,
    writing: bool = False,
) -> StoreError:
    """
    Wrap a store backend exception in our typed error hierarchy.

    Args:
        exc: The original exception
        context: Additional context for debugging (collection key, path)
        writing: True when the failure happened while persisting

    Returns:
        Typed StoreError subclass
    """
    if isinstance(exc, StoreError):
        return exc

    ctx = dict(context or {})
    ctx['original_error'] = str(exc)
    ctx['error_type'] = type(exc).__name__

    if writing:
        return StoreWriteError(f"Store write failed: {exc}", context=ctx)
    if isinstance(exc, (ValueError, KeyError, TypeError, OSError)):
        return StoreReadError(f"Store read failed: {exc}", context=ctx)
    return StoreError(f"Store error: {exc}", context=ctx)
