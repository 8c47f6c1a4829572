"""
The Lambda Adapter & Orchestrator for the RDS Snapshot Exporter service.

This module is the main entry point for the AWS Lambda function. It is
responsible for:
1.  Loading and validating the configuration at cold start, before anything
    is routed. A bad configuration fails the function's initialization.
2.  Initializing and configuring AWS Lambda Powertools (Logger, Tracer and
    Metrics).
3.  Unwrapping SNS records carrying RDS event notifications.
4.  Handing the notifications to the dispatcher, which runs each one through
    the dedup & trigger engine on a worker pool.
5.  Publishing one metric per processing outcome.
6.  Failing the invocation when any notification hit a retryable error, so
    the asynchronous invocation is retried. Snapshots that already triggered
    an export are suppressed on the retry.
"""

from collections import Counter
from datetime import timedelta

import boto3
from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.data_classes import SNSEvent
from aws_lambda_powertools.utilities.typing import LambdaContext

from .clients import (
    BackupJobClient,
    GlueCrawlerClient,
    RdsExportClient,
    bounded_client_config,
)
from .config import AppConfig, get_config
from .dispatcher import NotificationDispatcher, RawNotification
from .engine import SnapshotExportEngine
from .exceptions import RedeliveryRequested, get_error_context
from .exporter import ExportActionBuilder
from .ownership import SnapshotOwnershipFilter
from .resolver import SnapshotTypeResolver
from .routing import route
from .store import (
    DynamoDBSnapshotRecordStore,
    InMemorySnapshotRecordStore,
    SnapshotRecordStore,
)


def build_record_store(config: AppConfig, dynamodb_client=None) -> SnapshotRecordStore:
    """DynamoDB-backed when a state table is configured, in-memory otherwise."""
    retention = timedelta(seconds=config.record_retention_seconds)
    if config.state_table:
        return DynamoDBSnapshotRecordStore(
            dynamodb_client or boto3.client("dynamodb"),
            table_name=config.state_table,
            retention=retention,
        )
    return InMemorySnapshotRecordStore(retention, lock_stripes=config.lock_stripes)


def build_dispatcher(
    config: AppConfig,
    record_store: SnapshotRecordStore,
    rds_client,
    glue_client,
    backup_client,
) -> NotificationDispatcher:
    """Wires the engine and its collaborators from configuration."""
    builder = ExportActionBuilder(
        export_client=RdsExportClient(
            rds_client, timeout_seconds=config.export_submit_timeout_seconds
        ),
        db_name=config.db_name,
        destination_bucket=config.snapshot_bucket,
        export_role_identity=config.export_role_arn,
        encryption_key_identity=config.export_kms_key_arn,
        destination_prefix=config.snapshot_export_prefix,
    )
    engine = SnapshotExportEngine(
        resolver=SnapshotTypeResolver(config.notification_kinds),
        store=record_store,
        builder=builder,
        catalog=GlueCrawlerClient(glue_client, config.glue_crawler_name),
        ownership=SnapshotOwnershipFilter(
            config.db_name, backup_jobs=BackupJobClient(backup_client)
        ),
    )
    return NotificationDispatcher(engine, max_workers=config.max_workers)


# --- Global & Reusable Components ---
CONFIG = get_config()

logger = Logger(service=CONFIG.service_name, level=CONFIG.log_level)
tracer = Tracer(service=CONFIG.service_name)
metrics = Metrics(
    namespace="RdsSnapshotExporter",
    service=CONFIG.service_name,
)

# Routing happens only after the configuration has been validated above.
SUBSCRIPTIONS = route(CONFIG.notification_kinds)
logger.info(
    "Exporter configured",
    extra={
        "db_name": CONFIG.db_name,
        "event_ids": sorted(e.value for e in CONFIG.configured_event_ids),
        "subscriptions": sorted(
            f"{s.source_type.value}/{s.event_category.value}" for s in SUBSCRIPTIONS
        ),
        "state_table": CONFIG.state_table,
    },
)

_boto_config = bounded_client_config(CONFIG.export_submit_timeout_seconds)
rds_boto_client = boto3.client("rds", config=_boto_config)
glue_boto_client = boto3.client("glue", config=_boto_config)
backup_boto_client = boto3.client("backup", config=_boto_config)

record_store = build_record_store(CONFIG)
dispatcher = build_dispatcher(
    CONFIG, record_store, rds_boto_client, glue_boto_client, backup_boto_client
)


@logger.inject_lambda_context()
@tracer.capture_lambda_handler
@metrics.log_metrics(capture_cold_start_metric=True)
def handler(event: dict, context: LambdaContext) -> dict:
    """Main Lambda handler for SNS-delivered RDS event notifications."""
    metrics.add_dimension("environment", CONFIG.environment)

    if not event.get("Records"):
        logger.warning("Event did not contain any SNS records. Exiting gracefully.")
        return {"results": []}

    notifications: list[RawNotification] = []
    for record in SNSEvent(event).records:
        if record.event_source != "aws:sns":
            metrics.add_metric(
                name="UnexpectedEventSource", unit=MetricUnit.Count, value=1
            )
            logger.warning(
                "Skipping record from an unexpected event source.",
                extra={"event_source": record.event_source},
            )
            continue
        notifications.append(
            RawNotification(
                body=record.sns.message,
                message_id=record.sns.message_id,
                topic_arn=record.sns.topic_arn,
            )
        )

    record_store.evict_expired()

    logger.info(
        "Starting snapshot notification processing",
        extra={
            "notifications": len(notifications),
            "request_id": context.aws_request_id,
        },
    )
    results = dispatcher.dispatch(notifications)

    outcome_counts = Counter(result.outcome for result in results)
    for outcome, count in outcome_counts.items():
        metrics.add_metric(name=outcome.metric_name, unit=MetricUnit.Count, value=count)

    logger.info(
        "Snapshot notification processing completed",
        extra={
            "outcomes": {
                outcome.value: count for outcome, count in outcome_counts.items()
            },
            "failures": sum(
                count
                for outcome, count in outcome_counts.items()
                if outcome.is_failure
            ),
        },
    )

    retry_message_ids = [
        result.message_id or "<unknown>" for result in results if result.retryable
    ]
    if retry_message_ids:
        metrics.add_metric(
            name="RetryableFailures", unit=MetricUnit.Count, value=len(retry_message_ids)
        )
        error = RedeliveryRequested(
            retry_message_ids, correlation_id=context.aws_request_id
        )
        logger.error(
            f"Requesting redelivery: {error}",
            extra={
                **get_error_context(error),
                "results": [result.to_dict() for result in results],
            },
        )
        raise error

    return {"results": [result.to_dict() for result in results]}
