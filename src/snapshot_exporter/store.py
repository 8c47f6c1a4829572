# src/snapshot_exporter/store.py

"""
The canonical snapshot record table.

One record per snapshot ARN. A record exists from the first notification for
that ARN (PENDING) and carries ``export_triggered`` once an export has been
claimed (EXPORT_TRIGGERED). Two implementations share the same contract:

* ``InMemorySnapshotRecordStore`` keeps records for the life of the process
  and serializes operations per ARN with a striped lock table.
* ``DynamoDBSnapshotRecordStore`` uses conditional writes so the guarantee
  holds across Lambda execution environments.
"""

import hashlib
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from botocore.exceptions import ClientError

from .exceptions import StateStoreError

if TYPE_CHECKING:
    from mypy_boto3_dynamodb.client import DynamoDBClient

logger = logging.getLogger(__name__)


class SnapshotState(str, Enum):
    UNSEEN = "UNSEEN"
    PENDING = "PENDING"
    EXPORT_TRIGGERED = "EXPORT_TRIGGERED"


@dataclass(frozen=True, slots=True)
class CanonicalSnapshotRecord:
    source_arn: str
    first_seen_event_id: str
    first_seen_at: datetime
    updated_at: datetime
    export_triggered: bool = False
    triggered_at: datetime | None = None

    @property
    def state(self) -> SnapshotState:
        if self.export_triggered:
            return SnapshotState.EXPORT_TRIGGERED
        return SnapshotState.PENDING


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SnapshotRecordStore(ABC):
    """Contract shared by the record table implementations."""

    @abstractmethod
    def observe(
        self, source_arn: str, event_id: str, now: datetime
    ) -> tuple[CanonicalSnapshotRecord, bool]:
        """
        Insert-if-absent. Returns the record and whether this call created it
        (UNSEEN -> PENDING).
        """

    @abstractmethod
    def try_trigger(self, source_arn: str, now: datetime) -> bool:
        """Compare-and-set PENDING -> EXPORT_TRIGGERED. True if this call won."""

    @abstractmethod
    def rollback(self, source_arn: str, now: datetime) -> bool:
        """Compare-and-set EXPORT_TRIGGERED -> PENDING after a failed submission."""

    @abstractmethod
    def get(self, source_arn: str) -> CanonicalSnapshotRecord | None:
        ...

    def evict_expired(self, now: datetime | None = None) -> int:
        """Drops records past the retention window. Returns how many went."""
        return 0


class InMemorySnapshotRecordStore(SnapshotRecordStore):
    def __init__(self, retention: timedelta, lock_stripes: int = 64):
        if lock_stripes <= 0:
            raise ValueError("lock_stripes must be positive")
        self._retention = retention
        self._locks = [threading.Lock() for _ in range(lock_stripes)]
        self._records: dict[str, CanonicalSnapshotRecord] = {}

    def _lock_for(self, source_arn: str) -> threading.Lock:
        digest = hashlib.blake2b(source_arn.encode("utf-8"), digest_size=8).digest()
        return self._locks[int.from_bytes(digest, "big") % len(self._locks)]

    def __len__(self) -> int:
        return len(self._records)

    def observe(self, source_arn, event_id, now):
        with self._lock_for(source_arn):
            existing = self._records.get(source_arn)
            if existing is not None:
                return existing, False
            record = CanonicalSnapshotRecord(
                source_arn=source_arn,
                first_seen_event_id=event_id,
                first_seen_at=now,
                updated_at=now,
            )
            self._records[source_arn] = record
            return record, True

    def try_trigger(self, source_arn, now):
        with self._lock_for(source_arn):
            record = self._records.get(source_arn)
            if record is None or record.export_triggered:
                return False
            self._records[source_arn] = replace(
                record, export_triggered=True, triggered_at=now, updated_at=now
            )
            return True

    def rollback(self, source_arn, now):
        with self._lock_for(source_arn):
            record = self._records.get(source_arn)
            if record is None or not record.export_triggered:
                return False
            self._records[source_arn] = replace(
                record, export_triggered=False, triggered_at=None, updated_at=now
            )
            return True

    def get(self, source_arn):
        with self._lock_for(source_arn):
            return self._records.get(source_arn)

    def evict_expired(self, now=None):
        cutoff = (now or _utcnow()) - self._retention
        evicted = 0
        for source_arn, record in list(self._records.items()):
            if record.updated_at >= cutoff:
                continue
            with self._lock_for(source_arn):
                current = self._records.get(source_arn)
                if current is not None and current.updated_at < cutoff:
                    del self._records[source_arn]
                    evicted += 1
        if evicted:
            logger.info(
                "Evicted expired snapshot records",
                extra={"evicted": evicted, "cutoff": cutoff.isoformat()},
            )
        return evicted


class DynamoDBSnapshotRecordStore(SnapshotRecordStore):
    """
    Record table backed by DynamoDB. Expiry is left to the table's TTL on the
    ``expiration`` attribute, so ``evict_expired`` is a no-op here.
    """

    def __init__(
        self,
        dynamodb_client: "DynamoDBClient",
        table_name: str,
        retention: timedelta,
    ):
        self._client = dynamodb_client
        self._table = table_name
        self._retention = retention

    def _expiration(self, now: datetime) -> dict:
        return {"N": str(int((now + self._retention).timestamp()))}

    @staticmethod
    def _is_condition_failure(e: ClientError) -> bool:
        return e.response["Error"]["Code"] == "ConditionalCheckFailedException"

    def _wrap(self, operation: str, source_arn: str, e: ClientError) -> StateStoreError:
        return StateStoreError(
            operation,
            context={
                "table": self._table,
                "source_arn": source_arn,
                "aws_error_code": e.response["Error"]["Code"],
                "aws_error_message": e.response["Error"].get("Message", ""),
            },
        )

    @staticmethod
    def _from_item(item: dict[str, Any]) -> CanonicalSnapshotRecord:
        triggered_at = item.get("triggered_at", {}).get("S")
        return CanonicalSnapshotRecord(
            source_arn=item["source_arn"]["S"],
            first_seen_event_id=item["first_seen_event_id"]["S"],
            first_seen_at=datetime.fromisoformat(item["first_seen_at"]["S"]),
            updated_at=datetime.fromisoformat(item["updated_at"]["S"]),
            export_triggered=item["export_triggered"]["BOOL"],
            triggered_at=datetime.fromisoformat(triggered_at) if triggered_at else None,
        )

    def observe(self, source_arn, event_id, now):
        record = CanonicalSnapshotRecord(
            source_arn=source_arn,
            first_seen_event_id=event_id,
            first_seen_at=now,
            updated_at=now,
        )
        try:
            self._client.put_item(
                TableName=self._table,
                Item={
                    "source_arn": {"S": source_arn},
                    "first_seen_event_id": {"S": event_id},
                    "first_seen_at": {"S": now.isoformat()},
                    "updated_at": {"S": now.isoformat()},
                    "export_triggered": {"BOOL": False},
                    "expiration": self._expiration(now),
                },
                ConditionExpression="attribute_not_exists(source_arn)",
            )
            return record, True
        except ClientError as e:
            if not self._is_condition_failure(e):
                raise self._wrap("observe", source_arn, e) from e

        existing = self.get(source_arn)
        if existing is None:
            # Expired by TTL between the two calls.
            raise StateStoreError(
                "observe", context={"table": self._table, "source_arn": source_arn}
            )
        return existing, False

    def try_trigger(self, source_arn, now):
        try:
            self._client.update_item(
                TableName=self._table,
                Key={"source_arn": {"S": source_arn}},
                UpdateExpression=(
                    "SET export_triggered = :true, triggered_at = :now, "
                    "updated_at = :now, #expiration = :expiration"
                ),
                ConditionExpression=(
                    "attribute_exists(source_arn) AND export_triggered = :false"
                ),
                ExpressionAttributeNames={"#expiration": "expiration"},
                ExpressionAttributeValues={
                    ":true": {"BOOL": True},
                    ":false": {"BOOL": False},
                    ":now": {"S": now.isoformat()},
                    ":expiration": self._expiration(now),
                },
            )
            return True
        except ClientError as e:
            if self._is_condition_failure(e):
                return False
            raise self._wrap("try_trigger", source_arn, e) from e

    def rollback(self, source_arn, now):
        try:
            self._client.update_item(
                TableName=self._table,
                Key={"source_arn": {"S": source_arn}},
                UpdateExpression=(
                    "SET export_triggered = :false, updated_at = :now "
                    "REMOVE triggered_at"
                ),
                ConditionExpression=(
                    "attribute_exists(source_arn) AND export_triggered = :true"
                ),
                ExpressionAttributeValues={
                    ":true": {"BOOL": True},
                    ":false": {"BOOL": False},
                    ":now": {"S": now.isoformat()},
                },
            )
            return True
        except ClientError as e:
            if self._is_condition_failure(e):
                return False
            raise self._wrap("rollback", source_arn, e) from e

    def get(self, source_arn):
        try:
            response = self._client.get_item(
                TableName=self._table,
                Key={"source_arn": {"S": source_arn}},
                ConsistentRead=True,
            )
        except ClientError as e:
            raise self._wrap("get", source_arn, e) from e
        item = response.get("Item")
        return self._from_item(item) if item else None
