# src/snapshot_exporter/dispatcher.py

"""Runs each notification as an independent unit of work on a thread pool."""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Sequence

from .engine import ProcessingOutcome, ProcessingResult, SnapshotExportEngine
from .exceptions import MalformedNotificationError, get_error_context
from .schemas import parse_notification

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RawNotification:
    """An undecoded notification as delivered by the transport."""

    body: str
    message_id: str | None = None
    topic_arn: str | None = None


class NotificationDispatcher:
    def __init__(self, engine: SnapshotExportEngine, max_workers: int = 4):
        if max_workers <= 0:
            raise ValueError("max_workers must be positive")
        self._engine = engine
        self._max_workers = max_workers

    def dispatch(self, notifications: Sequence[RawNotification]) -> list[ProcessingResult]:
        """Processes all notifications; results come back in input order."""
        if not notifications:
            return []
        workers = min(self._max_workers, len(notifications))
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="snapshot-exporter"
        ) as pool:
            futures = [pool.submit(self._handle, item) for item in notifications]
            return [future.result() for future in futures]

    def _handle(self, item: RawNotification) -> ProcessingResult:
        try:
            notification = parse_notification(
                item.body, message_id=item.message_id, topic_arn=item.topic_arn
            )
        except MalformedNotificationError as e:
            logger.warning(
                f"Dropping malformed notification: {e}",
                extra={**get_error_context(e), "message_id": item.message_id},
            )
            return ProcessingResult(
                outcome=ProcessingOutcome.MALFORMED,
                message_id=item.message_id,
                error=get_error_context(e),
            )

        try:
            return self._engine.process(notification)
        except Exception as e:
            # Contain anything unexpected so one message cannot sink the batch.
            logger.exception(
                "Unexpected error processing notification",
                extra={
                    "message_id": item.message_id,
                    "event_id": notification.event_id,
                    "error_type": type(e).__name__,
                },
            )
            return ProcessingResult(
                outcome=ProcessingOutcome.FAILED,
                event_id=notification.event_id,
                source_arn=notification.source_arn,
                message_id=item.message_id,
                error=get_error_context(e),
            )
