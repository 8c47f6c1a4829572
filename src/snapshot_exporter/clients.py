# src/snapshot_exporter/clients.py

"""
Client wrappers for the AWS services the exporter talks to (RDS, Glue and
AWS Backup).

These classes keep boto3 error codes out of the orchestration logic: each one
maps botocore failures onto an export outcome or onto the exception types in
``exceptions``.
"""

import logging
from typing import TYPE_CHECKING

from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from .exceptions import (
    CollaboratorRejected,
    CollaboratorTimeout,
    OwnershipLookupError,
    get_error_context,
)
from .exporter import ExportRequest, SubmitOutcome, SubmitStatus

if TYPE_CHECKING:
    from mypy_boto3_backup.client import BackupClient as BackupClientType
    from mypy_boto3_glue.client import GlueClient as GlueClientType
    from mypy_boto3_rds.client import RDSClient as RDSClientType

logger = logging.getLogger(__name__)

_TIMEOUT_ERRORS = (ReadTimeoutError, ConnectTimeoutError, EndpointConnectionError)
_EXPORT_TASK_EXISTS_CODES = {"ExportTaskAlreadyExists", "ExportTaskAlreadyExistsFault"}
_LOOKUP_ERRORS = (ClientError, KeyError) + _TIMEOUT_ERRORS


def bounded_client_config(timeout_seconds: int) -> BotoConfig:
    """
    Botocore config that bounds a single call by ``timeout_seconds``. Retries
    are off: a call that does not answer in time is reported as timed out and
    retried through redelivery.
    """
    return BotoConfig(
        connect_timeout=timeout_seconds,
        read_timeout=timeout_seconds,
        retries={"total_max_attempts": 1, "mode": "standard"},
    )


class RdsExportClient:
    """Submits snapshot export tasks through ``rds.start_export_task``."""

    collaborator = "rds:StartExportTask"

    def __init__(self, rds_client: "RDSClientType", timeout_seconds: float):
        self._client = rds_client
        self._timeout_seconds = timeout_seconds

    def submit(self, request: ExportRequest) -> SubmitOutcome:
        try:
            response = self._client.start_export_task(
                **request.to_start_export_task_kwargs()
            )
        except ClientError as e:
            error_code = e.response["Error"]["Code"]
            error_message = e.response["Error"].get("Message", "")
            if error_code in _EXPORT_TASK_EXISTS_CODES:
                logger.info(
                    "Export task already exists for snapshot",
                    extra={
                        "source_arn": request.source_arn,
                        "export_task_identifier": request.export_task_identifier,
                    },
                )
                return SubmitOutcome(status=SubmitStatus.ALREADY_IN_PROGRESS)
            return SubmitOutcome(
                status=SubmitStatus.REJECTED,
                error=CollaboratorRejected(
                    self.collaborator,
                    error_code,
                    context={
                        "source_arn": request.source_arn,
                        "export_task_identifier": request.export_task_identifier,
                        "aws_error_code": error_code,
                        "aws_error_message": error_message,
                    },
                ),
            )
        except _TIMEOUT_ERRORS as e:
            return SubmitOutcome(
                status=SubmitStatus.TIMED_OUT,
                error=CollaboratorTimeout(
                    self.collaborator,
                    self._timeout_seconds,
                    context={
                        "source_arn": request.source_arn,
                        "export_task_identifier": request.export_task_identifier,
                        "connection_error": str(e),
                    },
                ),
            )

        return SubmitOutcome(
            status=SubmitStatus.ACCEPTED, task_status=response.get("Status")
        )


class GlueCrawlerClient:
    """
    Catalog refresh signal. Starts the crawler that scans the export bucket;
    failures are logged and never raised.
    """

    collaborator = "glue:StartCrawler"

    def __init__(self, glue_client: "GlueClientType", crawler_name: str):
        self._client = glue_client
        self._crawler_name = crawler_name

    def signal(self, source_arn: str, destination: str) -> None:
        log_extra = {
            "crawler_name": self._crawler_name,
            "source_arn": source_arn,
            "destination": destination,
        }
        try:
            self._client.start_crawler(Name=self._crawler_name)
        except ClientError as e:
            error_code = e.response["Error"]["Code"]
            if error_code == "CrawlerRunningException":
                logger.info("Crawler already running; refresh covered.", extra=log_extra)
                return
            error = CollaboratorRejected(
                self.collaborator,
                error_code,
                context={
                    **log_extra,
                    "aws_error_message": e.response["Error"].get("Message", ""),
                },
            )
            logger.error(
                f"Catalog refresh failed: {error}", extra=get_error_context(error)
            )
            return
        except _TIMEOUT_ERRORS as e:
            logger.error(
                "Catalog refresh timed out",
                extra={**log_extra, "connection_error": str(e)},
            )
            return
        except BotoCoreError as e:
            logger.error(
                f"Catalog refresh failed: {e}",
                extra={**log_extra, **get_error_context(e)},
            )
            return
        logger.info("Catalog refresh requested", extra=log_extra)


class BackupJobClient:
    """Looks up the protected resource behind an AWS Backup snapshot."""

    def __init__(self, backup_client: "BackupClientType"):
        self._client = backup_client

    def resource_arn_for_backup_job(self, job_id: str, source_identifier: str) -> str:
        try:
            response = self._client.describe_backup_job(BackupJobId=job_id)
            return response["ResourceArn"]
        except _LOOKUP_ERRORS as e:
            raise OwnershipLookupError(source_identifier, str(e)) from e

    def resource_arn_for_copy_job(self, job_id: str, source_identifier: str) -> str:
        try:
            response = self._client.describe_copy_job(CopyJobId=job_id)
            return response["CopyJob"]["ResourceArn"]
        except _LOOKUP_ERRORS as e:
            raise OwnershipLookupError(source_identifier, str(e)) from e
