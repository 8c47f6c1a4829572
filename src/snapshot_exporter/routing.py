# src/snapshot_exporter/routing.py

"""
Derives the RDS event subscriptions needed to receive exactly the configured
notification kinds.
"""

import logging
from typing import Iterable

from .events import (
    EVENT_KIND_TABLE,
    NotificationKind,
    RdsEventId,
    SubscriptionSpec,
)

logger = logging.getLogger(__name__)


def route(configured_kinds: Iterable[NotificationKind]) -> frozenset[SubscriptionSpec]:
    """
    Returns the minimal set of (source type, event category) subscriptions.

    Several kinds can share a subscription (automated and manual instance
    snapshots both arrive as ``db-snapshot`` / ``creation``); each one is
    returned only once.
    """
    kinds = list(configured_kinds)
    specs = frozenset(EVENT_KIND_TABLE[kind.event_id].subscription for kind in kinds)

    if not any(
        kind.event_id is RdsEventId.DB_BACKUP_SNAPSHOT_FINISHED_COPY for kind in kinds
    ):
        logger.warning(
            "No backup copy-finished event configured; snapshots that AWS Backup "
            "copies instead of creating will not be exported.",
            extra={"event_id": RdsEventId.DB_BACKUP_SNAPSHOT_FINISHED_COPY.value},
        )

    logger.debug(
        "Routed notification kinds to subscriptions",
        extra={
            "kinds": [kind.event_id.value for kind in kinds],
            "subscriptions": sorted(
                f"{s.source_type.value}/{s.event_category.value}" for s in specs
            ),
        },
    )
    return specs
