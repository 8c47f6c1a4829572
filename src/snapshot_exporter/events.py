# src/snapshot_exporter/events.py

"""
Static description of the RDS snapshot notifications the exporter understands.

Every supported event id is described once in ``EVENT_KIND_TABLE``: which
snapshot type it must be configured with, which resource kind the snapshot is,
and which RDS event subscription delivers it. Adding a new notification kind
is a change to this table, not to the resolver or router.

See:
  https://docs.aws.amazon.com/AmazonRDS/latest/AuroraUserGuide/USER_Events.Messages.html
  https://docs.aws.amazon.com/AmazonRDS/latest/UserGuide/USER_Events.Messages.html
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping, Sequence

from .exceptions import ConfigurationError


class RdsEventId(str, Enum):
    # Automated snapshots of Aurora clusters
    DB_AUTOMATED_AURORA_SNAPSHOT_CREATED = "RDS-EVENT-0169"
    # Automated snapshots of non-Aurora instances
    DB_AUTOMATED_SNAPSHOT_CREATED = "RDS-EVENT-0091"
    # Manual snapshots, including snapshots AWS Backup takes directly
    DB_MANUAL_SNAPSHOT_CREATED = "RDS-EVENT-0042"
    # AWS Backup copied a recent snapshot instead of taking a new one
    DB_BACKUP_SNAPSHOT_FINISHED_COPY = "RDS-EVENT-0197"


class RdsSnapshotType(str, Enum):
    AUTOMATED = "AUTOMATED"
    BACKUP = "BACKUP"
    MANUAL = "MANUAL"


class ResourceKind(str, Enum):
    """The RDS resource type segment of a snapshot ARN."""

    SNAPSHOT = "snapshot"
    CLUSTER_SNAPSHOT = "cluster-snapshot"


class SourceType(str, Enum):
    DB_SNAPSHOT = "db-snapshot"
    DB_CLUSTER_SNAPSHOT = "db-cluster-snapshot"


class EventCategory(str, Enum):
    CREATION = "creation"
    BACKUP = "backup"
    NOTIFICATION = "notification"


@dataclass(frozen=True, slots=True)
class SubscriptionSpec:
    """One upstream RDS event subscription (source type + category)."""

    source_type: SourceType
    event_category: EventCategory

    def to_event_subscription_kwargs(
        self, subscription_name: str, sns_topic_arn: str
    ) -> dict:
        """Keyword arguments for ``rds.create_event_subscription``."""
        return {
            "SubscriptionName": subscription_name,
            "SnsTopicArn": sns_topic_arn,
            "SourceType": self.source_type.value,
            "EventCategories": [self.event_category.value],
            "Enabled": True,
        }


@dataclass(frozen=True, slots=True)
class EventKindInfo:
    snapshot_type: RdsSnapshotType
    resource_kind: ResourceKind
    subscription: SubscriptionSpec


EVENT_KIND_TABLE: Mapping[RdsEventId, EventKindInfo] = {
    RdsEventId.DB_AUTOMATED_AURORA_SNAPSHOT_CREATED: EventKindInfo(
        snapshot_type=RdsSnapshotType.AUTOMATED,
        resource_kind=ResourceKind.CLUSTER_SNAPSHOT,
        subscription=SubscriptionSpec(
            SourceType.DB_CLUSTER_SNAPSHOT, EventCategory.BACKUP
        ),
    ),
    RdsEventId.DB_AUTOMATED_SNAPSHOT_CREATED: EventKindInfo(
        snapshot_type=RdsSnapshotType.AUTOMATED,
        resource_kind=ResourceKind.SNAPSHOT,
        subscription=SubscriptionSpec(SourceType.DB_SNAPSHOT, EventCategory.CREATION),
    ),
    RdsEventId.DB_MANUAL_SNAPSHOT_CREATED: EventKindInfo(
        snapshot_type=RdsSnapshotType.MANUAL,
        resource_kind=ResourceKind.SNAPSHOT,
        subscription=SubscriptionSpec(SourceType.DB_SNAPSHOT, EventCategory.CREATION),
    ),
    RdsEventId.DB_BACKUP_SNAPSHOT_FINISHED_COPY: EventKindInfo(
        snapshot_type=RdsSnapshotType.BACKUP,
        resource_kind=ResourceKind.SNAPSHOT,
        subscription=SubscriptionSpec(
            SourceType.DB_SNAPSHOT, EventCategory.NOTIFICATION
        ),
    ),
}


@dataclass(frozen=True, slots=True)
class NotificationKind:
    """A configured (event id, expected snapshot type) pair."""

    event_id: RdsEventId
    expected_snapshot_type: RdsSnapshotType

    @property
    def info(self) -> EventKindInfo:
        return EVENT_KIND_TABLE[self.event_id]

    @classmethod
    def from_strings(cls, event_id: str, snapshot_type: str) -> "NotificationKind":
        """
        Builds a kind from raw configuration values and checks it against
        ``EVENT_KIND_TABLE``. Raises ConfigurationError on any mismatch.
        """
        try:
            rds_event_id = RdsEventId(event_id.strip())
        except ValueError as e:
            raise ConfigurationError(
                f"Unsupported RDS event id '{event_id}'",
                context={"event_id": event_id},
            ) from e
        try:
            rds_snapshot_type = RdsSnapshotType(snapshot_type.strip().upper())
        except ValueError as e:
            raise ConfigurationError(
                f"Unsupported snapshot type '{snapshot_type}'",
                context={"snapshot_type": snapshot_type},
            ) from e

        expected = EVENT_KIND_TABLE[rds_event_id].snapshot_type
        if rds_snapshot_type is not expected:
            raise ConfigurationError(
                f"Event {rds_event_id.value} must be configured with snapshot type "
                f"{expected.value}, not {rds_snapshot_type.value}",
                context={
                    "event_id": rds_event_id.value,
                    "snapshot_type": rds_snapshot_type.value,
                    "expected_snapshot_type": expected.value,
                },
            )
        return cls(event_id=rds_event_id, expected_snapshot_type=rds_snapshot_type)


def parse_notification_kinds(
    event_ids: Sequence[str], snapshot_types: Sequence[str]
) -> tuple[NotificationKind, ...]:
    """
    Pairs up the configured event ids and snapshot types positionally.

    The result keeps configuration order with repeated pairs collapsed.
    """
    if len(event_ids) != len(snapshot_types):
        raise ConfigurationError(
            "RDS_EVENT_IDS and RDS_SNAPSHOT_TYPES must have the same number of entries",
            context={
                "event_ids": list(event_ids),
                "snapshot_types": list(snapshot_types),
            },
        )
    if not event_ids:
        raise ConfigurationError("At least one RDS event id must be configured")

    kinds: dict[NotificationKind, None] = {}
    for event_id, snapshot_type in zip(event_ids, snapshot_types):
        kinds.setdefault(NotificationKind.from_strings(event_id, snapshot_type))
    return tuple(kinds)


def resource_kinds_for(kinds: Iterable[NotificationKind]) -> tuple[ResourceKind, ...]:
    return tuple(kind.info.resource_kind for kind in kinds)
