"""
Shared fixtures for unit tests.
"""

from __future__ import annotations

import json
import os
import types
import uuid
from datetime import datetime, timezone

import pytest

# The Lambda module loads its configuration at import time, so the environment
# has to be in place before any test module imports it.
_TEST_ENV = {
    "DB_NAME": "orders",
    "RDS_EVENT_IDS": "RDS-EVENT-0091,RDS-EVENT-0197",
    "RDS_SNAPSHOT_TYPES": "AUTOMATED,BACKUP",
    "SNAPSHOT_BUCKET_NAME": "orders-snapshot-exports",
    "SNAPSHOT_TASK_ROLE": "arn:aws:iam::123456789012:role/SnapshotExportTaskRole",
    "SNAPSHOT_TASK_KEY": "arn:aws:kms:eu-west-1:123456789012:key/abcd-1234",
    "SERVICE_NAME": "rds-snapshot-exporter-test",
    "ENVIRONMENT": "test",
    "AWS_DEFAULT_REGION": "eu-west-1",
    "POWERTOOLS_TRACE_DISABLED": "true",
    "POWERTOOLS_SERVICE_NAME": "rds-snapshot-exporter-test",
    "POWERTOOLS_LOG_LEVEL": "INFO",
}
for _name, _value in _TEST_ENV.items():
    os.environ.setdefault(_name, _value)

TOPIC_ARN = "arn:aws:sns:eu-west-1:123456789012:rds-snapshot-creation"
SNAPSHOT_ARN = "arn:aws:rds:eu-west-1:123456789012:snapshot:rds:orders-2024-05-01-03-10"


def rds_message(
    event_id: str = "RDS-EVENT-0091",
    source_id: str = "rds:orders-2024-05-01-03-10",
    source_arn: str | None = SNAPSHOT_ARN,
    event_message: str = "Automated snapshot created",
) -> dict:
    """The JSON body RDS publishes to SNS for a snapshot event."""
    message = {
        "Event Source": "db-snapshot",
        "Event Time": "2024-05-01 03:14:15.926",
        "Identifier Link": f"https://console.aws.amazon.com/rds/home?region=eu-west-1#snapshot:id={source_id}",
        "Source ID": source_id,
        "Event ID": f"http://docs.amazonwebservices.com/AmazonRDS/latest/UserGuide/USER_Events.html#{event_id}",
        "Event Message": event_message,
    }
    if source_arn is not None:
        message["Source ARN"] = source_arn
    return message


@pytest.fixture
def make_rds_message():
    return rds_message


@pytest.fixture
def sns_event() -> dict:
    """One SNS record wrapping a single automated snapshot event."""
    return {
        "Records": [
            {
                "EventSource": "aws:sns",
                "EventVersion": "1.0",
                "EventSubscriptionArn": f"{TOPIC_ARN}:{uuid.uuid4()}",
                "Sns": {
                    "Type": "Notification",
                    "MessageId": str(uuid.uuid4()),
                    "TopicArn": TOPIC_ARN,
                    "Subject": "RDS Notification Message",
                    "Message": json.dumps(rds_message()),  # what the lambda really sees
                    "Timestamp": datetime.now(timezone.utc).isoformat(),
                    "SignatureVersion": "1",
                    "Signature": "dummy",
                    "SigningCertUrl": "https://example.com/cert.pem",
                    "UnsubscribeUrl": "https://example.com/unsubscribe",
                    "MessageAttributes": {},
                },
            }
        ]
    }


@pytest.fixture
def lambda_context():
    """A *very* small stand-in for the LambdaContext object."""
    return types.SimpleNamespace(
        function_name="orders-rds-snapshot-exporter",
        function_version="$LATEST",
        memory_limit_in_mb=128,
        aws_request_id="req-" + uuid.uuid4().hex,
        invoked_function_arn="arn:aws:lambda:eu-west-1:123456789012:function:orders-rds-snapshot-exporter",
        get_remaining_time_in_millis=lambda: 30000,
    )
