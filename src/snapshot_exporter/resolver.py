# src/snapshot_exporter/resolver.py

"""Classifies a notification's event id using the configured notification kinds."""

import logging
from dataclasses import dataclass
from typing import Iterable

from .events import NotificationKind, RdsEventId, RdsSnapshotType, ResourceKind
from .exceptions import ConfigurationError, UnrecognizedEventKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ResolvedSnapshotType:
    event_id: RdsEventId
    snapshot_type: RdsSnapshotType
    resource_kind: ResourceKind


class SnapshotTypeResolver:
    """
    Lookup from event id to (snapshot type, resource kind), restricted to the
    kinds this deployment was configured for.
    """

    def __init__(self, configured_kinds: Iterable[NotificationKind]):
        table: dict[str, ResolvedSnapshotType] = {}
        for kind in configured_kinds:
            info = kind.info
            if kind.expected_snapshot_type is not info.snapshot_type:
                raise ConfigurationError(
                    f"Event {kind.event_id.value} cannot be resolved as "
                    f"{kind.expected_snapshot_type.value}",
                    context={"event_id": kind.event_id.value},
                )
            table[kind.event_id.value] = ResolvedSnapshotType(
                event_id=kind.event_id,
                snapshot_type=info.snapshot_type,
                resource_kind=info.resource_kind,
            )
        if not table:
            raise ConfigurationError("No notification kinds configured")
        self._table = table

    @property
    def event_ids(self) -> frozenset[str]:
        return frozenset(self._table)

    def resolve(self, event_id: str) -> ResolvedSnapshotType:
        try:
            return self._table[event_id]
        except KeyError:
            raise UnrecognizedEventKind(
                event_id, context={"configured_event_ids": sorted(self._table)}
            ) from None
