# tests/unit/test_routing.py

import logging

from snapshot_exporter.events import (
    EventCategory,
    NotificationKind,
    RdsEventId,
    RdsSnapshotType,
    SourceType,
    SubscriptionSpec,
)
from snapshot_exporter.routing import route

CLUSTER_CREATED = NotificationKind(
    RdsEventId.DB_AUTOMATED_AURORA_SNAPSHOT_CREATED, RdsSnapshotType.AUTOMATED
)
INSTANCE_CREATED = NotificationKind(
    RdsEventId.DB_AUTOMATED_SNAPSHOT_CREATED, RdsSnapshotType.AUTOMATED
)
MANUAL_CREATED = NotificationKind(
    RdsEventId.DB_MANUAL_SNAPSHOT_CREATED, RdsSnapshotType.MANUAL
)
BACKUP_COPY = NotificationKind(
    RdsEventId.DB_BACKUP_SNAPSHOT_FINISHED_COPY, RdsSnapshotType.BACKUP
)


def test_cluster_and_manual_kinds():
    assert route({CLUSTER_CREATED, MANUAL_CREATED}) == {
        SubscriptionSpec(SourceType.DB_CLUSTER_SNAPSHOT, EventCategory.BACKUP),
        SubscriptionSpec(SourceType.DB_SNAPSHOT, EventCategory.CREATION),
    }


def test_kinds_sharing_a_subscription_collapse():
    specs = route([INSTANCE_CREATED, MANUAL_CREATED, INSTANCE_CREATED])

    assert specs == {SubscriptionSpec(SourceType.DB_SNAPSHOT, EventCategory.CREATION)}


def test_backup_copy_gets_notification_subscription():
    specs = route([INSTANCE_CREATED, BACKUP_COPY])

    assert specs == {
        SubscriptionSpec(SourceType.DB_SNAPSHOT, EventCategory.CREATION),
        SubscriptionSpec(SourceType.DB_SNAPSHOT, EventCategory.NOTIFICATION),
    }


def test_all_kinds():
    assert len(route([CLUSTER_CREATED, INSTANCE_CREATED, MANUAL_CREATED, BACKUP_COPY])) == 3


def test_missing_backup_copy_kind_is_warned(caplog):
    with caplog.at_level(logging.WARNING, logger="snapshot_exporter.routing"):
        route([INSTANCE_CREATED])

    assert any(
        "No backup copy-finished event configured" in r.getMessage()
        for r in caplog.records
    )


def test_configured_backup_copy_kind_is_not_warned(caplog):
    with caplog.at_level(logging.WARNING, logger="snapshot_exporter.routing"):
        route([INSTANCE_CREATED, BACKUP_COPY])

    assert not caplog.records


def test_subscription_kwargs():
    spec = SubscriptionSpec(SourceType.DB_CLUSTER_SNAPSHOT, EventCategory.BACKUP)

    assert spec.to_event_subscription_kwargs("orders-snapshots", "arn:topic") == {
        "SubscriptionName": "orders-snapshots",
        "SnsTopicArn": "arn:topic",
        "SourceType": "db-cluster-snapshot",
        "EventCategories": ["backup"],
        "Enabled": True,
    }
