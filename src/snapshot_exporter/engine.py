# src/snapshot_exporter/engine.py

"""
Dedup & trigger engine.

Every notification moves its snapshot through UNSEEN -> PENDING ->
EXPORT_TRIGGERED in the record table. The PENDING -> EXPORT_TRIGGERED
compare-and-set happens right before the export request is submitted and is
the only place an export can be claimed, so whichever notification for an
ARN gets there first submits and every other one, redeliveries and AWS Backup
copy notifications included, is suppressed. A rejected or timed-out
submission rolls the record back to PENDING so a later notification can try
again.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Protocol

from .exceptions import (
    MalformedNotificationError,
    SnapshotExporterError,
    UnrecognizedEventKind,
    get_error_context,
    is_retryable_error,
)
from .exporter import ExportActionBuilder, SubmitStatus
from .ownership import SnapshotOwnershipFilter
from .resolver import SnapshotTypeResolver
from .schemas import SnapshotNotification
from .store import SnapshotRecordStore

logger = logging.getLogger(__name__)


class CatalogRefreshSignal(Protocol):
    def signal(self, source_arn: str, destination: str) -> None: ...


class ProcessingOutcome(str, Enum):
    EXPORT_STARTED = "EXPORT_STARTED"
    EXPORT_ALREADY_IN_PROGRESS = "EXPORT_ALREADY_IN_PROGRESS"
    DUPLICATE_SUPPRESSED = "DUPLICATE_SUPPRESSED"
    NOT_OWNED = "NOT_OWNED"
    EXPORT_REJECTED = "EXPORT_REJECTED"
    EXPORT_TIMED_OUT = "EXPORT_TIMED_OUT"
    UNRECOGNIZED = "UNRECOGNIZED"
    MALFORMED = "MALFORMED"
    FAILED = "FAILED"

    @property
    def metric_name(self) -> str:
        """CamelCase metric name, e.g. ``DuplicateSuppressed``."""
        return "".join(part.capitalize() for part in self.value.split("_"))

    @property
    def is_failure(self) -> bool:
        return self in _FAILURE_OUTCOMES


_FAILURE_OUTCOMES = frozenset(
    {
        ProcessingOutcome.EXPORT_REJECTED,
        ProcessingOutcome.EXPORT_TIMED_OUT,
        ProcessingOutcome.UNRECOGNIZED,
        ProcessingOutcome.MALFORMED,
        ProcessingOutcome.FAILED,
    }
)


@dataclass(frozen=True)
class ProcessingResult:
    outcome: ProcessingOutcome
    event_id: str | None = None
    source_arn: str | None = None
    message_id: str | None = None
    export_task_identifier: str | None = None
    retryable: bool = False
    error: dict[str, Any] | None = field(default=None, compare=False)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "outcome": self.outcome.value,
            "event_id": self.event_id,
            "source_arn": self.source_arn,
            "message_id": self.message_id,
        }
        if self.export_task_identifier:
            result["export_task_identifier"] = self.export_task_identifier
        if self.retryable:
            result["retryable"] = True
        if self.error:
            result["error"] = self.error
        return result


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SnapshotExportEngine:
    def __init__(
        self,
        resolver: SnapshotTypeResolver,
        store: SnapshotRecordStore,
        builder: ExportActionBuilder,
        catalog: CatalogRefreshSignal,
        ownership: SnapshotOwnershipFilter | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._resolver = resolver
        self._store = store
        self._builder = builder
        self._catalog = catalog
        self._ownership = ownership
        self._clock = clock

    def process(self, notification: SnapshotNotification) -> ProcessingResult:
        """
        Handles one notification. Runtime errors are turned into a failed
        result here; nothing but programming errors escapes.
        """
        try:
            return self._process(notification)
        except UnrecognizedEventKind as e:
            self._correlate(e, notification)
            logger.warning(
                f"Dropping notification: {e}",
                extra={**get_error_context(e), "message_id": notification.message_id},
            )
            return self._result(notification, ProcessingOutcome.UNRECOGNIZED, error=e)
        except MalformedNotificationError as e:
            self._correlate(e, notification)
            logger.warning(
                f"Dropping notification: {e}",
                extra={**get_error_context(e), "message_id": notification.message_id},
            )
            return self._result(notification, ProcessingOutcome.MALFORMED, error=e)
        except SnapshotExporterError as e:
            self._correlate(e, notification)
            logger.error(
                f"Failed to process notification: {e}",
                extra={**get_error_context(e), "message_id": notification.message_id},
            )
            return self._result(notification, ProcessingOutcome.FAILED, error=e)

    def _process(self, notification: SnapshotNotification) -> ProcessingResult:
        resolved = self._resolver.resolve(notification.event_id)
        source_arn = notification.canonical_arn(resolved.resource_kind)
        log_extra = {
            "event_id": notification.event_id,
            "snapshot_type": resolved.snapshot_type.value,
            "source_arn": source_arn,
            "message_id": notification.message_id,
        }

        if self._ownership is not None and not self._ownership.owns(
            notification, resolved
        ):
            logger.info("Snapshot belongs to another database; ignoring.", extra=log_extra)
            return self._result(
                notification, ProcessingOutcome.NOT_OWNED, source_arn=source_arn
            )

        record, created = self._store.observe(
            source_arn, resolved.event_id.value, self._clock()
        )
        if created:
            logger.debug("First notification for snapshot", extra=log_extra)

        if record.export_triggered or not self._store.try_trigger(
            source_arn, self._clock()
        ):
            logger.info(
                "Duplicate snapshot notification suppressed",
                extra={
                    **log_extra,
                    "outcome": ProcessingOutcome.DUPLICATE_SUPPRESSED.value,
                    "first_seen_event_id": record.first_seen_event_id,
                },
            )
            return self._result(
                notification,
                ProcessingOutcome.DUPLICATE_SUPPRESSED,
                source_arn=source_arn,
            )

        request = self._builder.build(record, resolved)
        try:
            outcome = self._builder.submit(request)
        except Exception:
            self._store.rollback(source_arn, self._clock())
            raise

        if outcome.succeeded:
            self._catalog.signal(source_arn, request.destination)
            result_outcome = (
                ProcessingOutcome.EXPORT_STARTED
                if outcome.status is SubmitStatus.ACCEPTED
                else ProcessingOutcome.EXPORT_ALREADY_IN_PROGRESS
            )
            logger.info(
                "Snapshot export triggered",
                extra={
                    **log_extra,
                    "outcome": result_outcome.value,
                    "export_task_identifier": request.export_task_identifier,
                    "task_status": outcome.task_status,
                },
            )
            return self._result(
                notification,
                result_outcome,
                source_arn=source_arn,
                export_task_identifier=request.export_task_identifier,
            )

        if outcome.error is not None:
            self._correlate(outcome.error, notification)
        self._store.rollback(source_arn, self._clock())
        result_outcome = (
            ProcessingOutcome.EXPORT_TIMED_OUT
            if outcome.status is SubmitStatus.TIMED_OUT
            else ProcessingOutcome.EXPORT_REJECTED
        )
        logger.error(
            f"Snapshot export not started: {outcome.error}",
            extra={
                **log_extra,
                "outcome": result_outcome.value,
                "export_task_identifier": request.export_task_identifier,
                **(get_error_context(outcome.error) if outcome.error else {}),
            },
        )
        return self._result(
            notification,
            result_outcome,
            source_arn=source_arn,
            export_task_identifier=request.export_task_identifier,
            error=outcome.error,
        )

    @staticmethod
    def _correlate(
        error: SnapshotExporterError, notification: SnapshotNotification
    ) -> None:
        if error.correlation_id is None:
            error.correlation_id = notification.message_id

    @staticmethod
    def _result(
        notification: SnapshotNotification,
        outcome: ProcessingOutcome,
        source_arn: str | None = None,
        export_task_identifier: str | None = None,
        error: Exception | None = None,
    ) -> ProcessingResult:
        return ProcessingResult(
            outcome=outcome,
            event_id=notification.event_id,
            source_arn=source_arn or notification.source_arn,
            message_id=notification.message_id,
            export_task_identifier=export_task_identifier,
            retryable=error is not None and is_retryable_error(error),
            error=get_error_context(error) if error else None,
        )
