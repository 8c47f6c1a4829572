# tests/unit/test_store.py

"""
Unit tests for the snapshot record tables in src/snapshot_exporter/store.py.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from snapshot_exporter.exceptions import StateStoreError
from snapshot_exporter.store import (
    DynamoDBSnapshotRecordStore,
    InMemorySnapshotRecordStore,
    SnapshotState,
)

ARN = "arn:aws:rds:eu-west-1:123456789012:snapshot:rds:orders-2024-05-01-03-10"
NOW = datetime(2024, 5, 1, 3, 15, tzinfo=timezone.utc)


def _client_error(code: str, operation: str = "PutItem") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


# -----------------------------------------------------------------------------
# In-memory table
# -----------------------------------------------------------------------------


@pytest.fixture
def store() -> InMemorySnapshotRecordStore:
    return InMemorySnapshotRecordStore(timedelta(hours=48), lock_stripes=8)


def test_observe_creates_pending_record_once(store):
    record, created = store.observe(ARN, "RDS-EVENT-0091", NOW)
    again, created_again = store.observe(ARN, "RDS-EVENT-0197", NOW)

    assert created is True
    assert created_again is False
    assert record.state is SnapshotState.PENDING
    assert again.first_seen_event_id == "RDS-EVENT-0091"
    assert len(store) == 1


def test_try_trigger_is_compare_and_set(store):
    store.observe(ARN, "RDS-EVENT-0091", NOW)

    assert store.try_trigger(ARN, NOW) is True
    assert store.try_trigger(ARN, NOW) is False

    record = store.get(ARN)
    assert record.state is SnapshotState.EXPORT_TRIGGERED
    assert record.triggered_at == NOW


def test_try_trigger_without_record(store):
    assert store.try_trigger(ARN, NOW) is False


def test_rollback_returns_to_pending(store):
    store.observe(ARN, "RDS-EVENT-0091", NOW)
    store.try_trigger(ARN, NOW)

    assert store.rollback(ARN, NOW) is True
    assert store.rollback(ARN, NOW) is False

    record = store.get(ARN)
    assert record.state is SnapshotState.PENDING
    assert record.triggered_at is None
    assert store.try_trigger(ARN, NOW) is True


def test_only_one_concurrent_trigger_wins(store):
    store.observe(ARN, "RDS-EVENT-0091", NOW)
    barrier = threading.Barrier(16)

    def attempt(_):
        barrier.wait()
        return store.try_trigger(ARN, NOW)

    with ThreadPoolExecutor(max_workers=16) as pool:
        results = list(pool.map(attempt, range(16)))

    assert results.count(True) == 1


def test_evict_expired(store):
    store.observe(ARN, "RDS-EVENT-0091", NOW - timedelta(hours=49))
    store.observe("arn:fresh", "RDS-EVENT-0091", NOW - timedelta(hours=1))

    assert store.evict_expired(NOW) == 1
    assert store.get(ARN) is None
    assert store.get("arn:fresh") is not None


def test_lock_stripes_must_be_positive():
    with pytest.raises(ValueError):
        InMemorySnapshotRecordStore(timedelta(hours=1), lock_stripes=0)


# -----------------------------------------------------------------------------
# DynamoDB table
# -----------------------------------------------------------------------------


@pytest.fixture
def mock_dynamodb() -> MagicMock:
    return MagicMock()


@pytest.fixture
def dynamo_store(mock_dynamodb) -> DynamoDBSnapshotRecordStore:
    return DynamoDBSnapshotRecordStore(
        mock_dynamodb, table_name="snapshot-records", retention=timedelta(hours=48)
    )


def _item(export_triggered: bool = False) -> dict:
    item = {
        "source_arn": {"S": ARN},
        "first_seen_event_id": {"S": "RDS-EVENT-0091"},
        "first_seen_at": {"S": NOW.isoformat()},
        "updated_at": {"S": NOW.isoformat()},
        "export_triggered": {"BOOL": export_triggered},
    }
    if export_triggered:
        item["triggered_at"] = {"S": NOW.isoformat()}
    return item


def test_dynamo_observe_inserts_conditionally(dynamo_store, mock_dynamodb):
    record, created = dynamo_store.observe(ARN, "RDS-EVENT-0091", NOW)

    assert created is True
    assert record.source_arn == ARN
    kwargs = mock_dynamodb.put_item.call_args.kwargs
    assert kwargs["TableName"] == "snapshot-records"
    assert kwargs["ConditionExpression"] == "attribute_not_exists(source_arn)"
    assert kwargs["Item"]["export_triggered"] == {"BOOL": False}
    assert kwargs["Item"]["expiration"] == {
        "N": str(int((NOW + timedelta(hours=48)).timestamp()))
    }


def test_dynamo_observe_returns_existing_record(dynamo_store, mock_dynamodb):
    mock_dynamodb.put_item.side_effect = _client_error("ConditionalCheckFailedException")
    mock_dynamodb.get_item.return_value = {"Item": _item(export_triggered=True)}

    record, created = dynamo_store.observe(ARN, "RDS-EVENT-0197", NOW)

    assert created is False
    assert record.export_triggered is True
    assert record.first_seen_event_id == "RDS-EVENT-0091"
    assert record.triggered_at == NOW
    mock_dynamodb.get_item.assert_called_once_with(
        TableName="snapshot-records",
        Key={"source_arn": {"S": ARN}},
        ConsistentRead=True,
    )


def test_dynamo_observe_wraps_other_errors(dynamo_store, mock_dynamodb):
    mock_dynamodb.put_item.side_effect = _client_error("ProvisionedThroughputExceededException")

    with pytest.raises(StateStoreError) as exc_info:
        dynamo_store.observe(ARN, "RDS-EVENT-0091", NOW)

    assert exc_info.value.context["aws_error_code"] == "ProvisionedThroughputExceededException"


def test_dynamo_try_trigger(dynamo_store, mock_dynamodb):
    assert dynamo_store.try_trigger(ARN, NOW) is True

    kwargs = mock_dynamodb.update_item.call_args.kwargs
    assert "export_triggered = :false" in kwargs["ConditionExpression"]
    assert kwargs["ExpressionAttributeValues"][":true"] == {"BOOL": True}


def test_dynamo_try_trigger_lost_race(dynamo_store, mock_dynamodb):
    mock_dynamodb.update_item.side_effect = _client_error(
        "ConditionalCheckFailedException", "UpdateItem"
    )

    assert dynamo_store.try_trigger(ARN, NOW) is False


def test_dynamo_rollback(dynamo_store, mock_dynamodb):
    assert dynamo_store.rollback(ARN, NOW) is True

    kwargs = mock_dynamodb.update_item.call_args.kwargs
    assert "export_triggered = :true" in kwargs["ConditionExpression"]
    assert "REMOVE triggered_at" in kwargs["UpdateExpression"]


def test_dynamo_rollback_wraps_errors(dynamo_store, mock_dynamodb):
    mock_dynamodb.update_item.side_effect = _client_error("InternalServerError", "UpdateItem")

    with pytest.raises(StateStoreError):
        dynamo_store.rollback(ARN, NOW)


def test_dynamo_get_missing(dynamo_store, mock_dynamodb):
    mock_dynamodb.get_item.return_value = {}

    assert dynamo_store.get(ARN) is None
    assert dynamo_store.evict_expired(NOW) == 0
