# src/snapshot_exporter/exceptions.py

"""
Shared custom exceptions for the RDS Snapshot Exporter service.

Centralizing exception definitions in a separate module prevents circular
import errors between other modules that need to raise or catch them.

Exception Hierarchy:
- SnapshotExporterError (base)
  - RetryableError (can be retried)
    - CollaboratorRejected
      - CollaboratorTimeout
    - StateStoreError
    - OwnershipLookupError
    - RedeliveryRequested
  - NonRetryableError (should not be retried)
    - ConfigurationError
    - UnrecognizedNotification
      - UnrecognizedEventKind
      - MalformedNotificationError
"""

from typing import Any, Dict, Optional


class SnapshotExporterError(Exception):
    """Base exception for all RDS Snapshot Exporter errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.context = dict(context) if context else {}
        self.correlation_id = correlation_id

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "error_message": self.message,
            "context": self.context,
            "correlation_id": self.correlation_id,
            "retryable": isinstance(self, RetryableError),
        }


class RetryableError(SnapshotExporterError):
    """Base class for errors that can be retried."""
    pass


class NonRetryableError(SnapshotExporterError):
    """Base class for errors that should not be retried."""
    pass


# === Configuration Errors ===

class ConfigurationError(NonRetryableError):
    """Raised when the deployment configuration is invalid. Fatal at startup."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", "CONFIGURATION_ERROR")
        super().__init__(message, **kwargs)


# === Per-notification Errors ===

class UnrecognizedNotification(NonRetryableError):
    """Base class for notifications that are logged and dropped."""
    pass


class UnrecognizedEventKind(UnrecognizedNotification):
    """Raised when an event id is not among the configured notification kinds."""

    def __init__(self, event_id: str, **kwargs):
        message = f"Unrecognized RDS event id: {event_id}"
        context = {"event_id": event_id}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(
            message, error_code="UNRECOGNIZED_EVENT_KIND", context=context, **kwargs
        )
        self.event_id = event_id


class MalformedNotificationError(UnrecognizedNotification):
    """Raised when a notification payload cannot be parsed."""

    def __init__(self, reason: str, **kwargs):
        if "error_code" not in kwargs:
            kwargs["error_code"] = "MALFORMED_NOTIFICATION"
        super().__init__(f"Malformed notification: {reason}", **kwargs)


# === Collaborator Errors ===

class CollaboratorRejected(RetryableError):
    """Raised when the export or catalog collaborator refuses a request."""

    def __init__(self, collaborator: str, reason: str, **kwargs):
        message = f"{collaborator} rejected the request: {reason}"
        context = {}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        context.update({"collaborator": collaborator, "reason": reason})
        kwargs.setdefault("error_code", "COLLABORATOR_REJECTED")
        super().__init__(message, context=context, **kwargs)
        self.collaborator = collaborator
        self.reason = reason


class CollaboratorTimeout(CollaboratorRejected):
    """Raised when a collaborator gives no definitive answer in time."""

    def __init__(self, collaborator: str, timeout_seconds: float, **kwargs):
        kwargs.setdefault("error_code", "COLLABORATOR_TIMEOUT")
        super().__init__(
            collaborator, f"no response within {timeout_seconds}s", **kwargs
        )
        self.context["timeout_seconds"] = timeout_seconds
        self.timeout_seconds = timeout_seconds


class StateStoreError(RetryableError):
    """Raised when the snapshot record table cannot be read or written."""

    def __init__(self, operation: str, **kwargs):
        message = f"Snapshot record table error during: {operation}"
        context = {"operation": operation}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(
            message, error_code="STATE_STORE_ERROR", context=context, **kwargs
        )


class OwnershipLookupError(RetryableError):
    """Raised when the owning database of a backup snapshot cannot be looked up."""

    def __init__(self, source_identifier: str, reason: str, **kwargs):
        message = f"Could not determine owner of {source_identifier}: {reason}"
        context = {"source_identifier": source_identifier, "reason": reason}
        super().__init__(
            message, error_code="OWNERSHIP_LOOKUP_FAILED", context=context, **kwargs
        )


# === Invocation Errors ===

class RedeliveryRequested(RetryableError):
    """
    Raised by the handler when notifications in the batch failed with a
    retryable error, so the asynchronous invocation is retried. Notifications
    that already triggered an export are suppressed on the retry.
    """

    def __init__(self, message_ids: list, **kwargs):
        message = f"{len(message_ids)} notification(s) failed with retryable errors"
        context = {"message_ids": list(message_ids)}
        super().__init__(
            message, error_code="REDELIVERY_REQUESTED", context=context, **kwargs
        )
        self.message_ids = list(message_ids)


# === Utility Functions ===

def is_retryable_error(error: Exception) -> bool:
    """Check if an error is retryable."""
    return isinstance(error, RetryableError)


def get_error_context(error: Exception) -> Dict[str, Any]:
    """Extract error context for logging."""
    if isinstance(error, SnapshotExporterError):
        return error.to_dict()
    else:
        return {
            "error_type": error.__class__.__name__,
            "error_message": str(error),
            "retryable": False,  # Unknown errors default to non-retryable
        }
