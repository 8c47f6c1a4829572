# src/snapshot_exporter/exporter.py

"""
Builds export requests for accepted snapshots and hands them to the export
collaborator.
"""

import hashlib
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from .events import ResourceKind
from .exceptions import CollaboratorRejected
from .resolver import ResolvedSnapshotType
from .store import CanonicalSnapshotRecord

if TYPE_CHECKING:
    from .clients import RdsExportClient

logger = logging.getLogger(__name__)

# RDS export task identifiers: 1-60 letters, digits or hyphens, starting with a
# letter, no trailing hyphen and no two consecutive hyphens.
_MAX_TASK_IDENTIFIER_LENGTH = 60
_TASK_ID_DIGEST_LENGTH = 16


def export_task_identifier(db_name: str, source_arn: str) -> str:
    """
    Deterministic export task id for a snapshot. Resubmitting the same snapshot
    reuses the id, so RDS itself refuses a second task for it.
    """
    digest = hashlib.sha256(source_arn.encode("utf-8")).hexdigest()[
        :_TASK_ID_DIGEST_LENGTH
    ]
    prefix = re.sub(r"[^a-zA-Z0-9]+", "-", db_name).strip("-").lower()
    if not prefix or not prefix[0].isalpha():
        prefix = f"export-{prefix}".rstrip("-")
    prefix = prefix[: _MAX_TASK_IDENTIFIER_LENGTH - _TASK_ID_DIGEST_LENGTH - 1]
    return f"{prefix.rstrip('-')}-{digest}"


@dataclass(frozen=True, slots=True)
class ExportRequest:
    source_arn: str
    resource_kind: ResourceKind
    export_task_identifier: str
    destination_bucket: str
    export_role_identity: str
    encryption_key_identity: str
    destination_prefix: str | None = None

    @property
    def destination(self) -> str:
        if self.destination_prefix:
            return f"s3://{self.destination_bucket}/{self.destination_prefix.strip('/')}"
        return f"s3://{self.destination_bucket}"

    def to_start_export_task_kwargs(self) -> dict:
        kwargs = {
            "ExportTaskIdentifier": self.export_task_identifier,
            "SourceArn": self.source_arn,
            "S3BucketName": self.destination_bucket,
            "IamRoleArn": self.export_role_identity,
            "KmsKeyId": self.encryption_key_identity,
        }
        if self.destination_prefix:
            kwargs["S3Prefix"] = self.destination_prefix.strip("/")
        return kwargs


class SubmitStatus(str, Enum):
    ACCEPTED = "ACCEPTED"
    ALREADY_IN_PROGRESS = "ALREADY_IN_PROGRESS"
    REJECTED = "REJECTED"
    TIMED_OUT = "TIMED_OUT"


@dataclass(frozen=True, slots=True)
class SubmitOutcome:
    status: SubmitStatus
    error: CollaboratorRejected | None = None
    task_status: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status in (SubmitStatus.ACCEPTED, SubmitStatus.ALREADY_IN_PROGRESS)

    @property
    def reason(self) -> str | None:
        return self.error.reason if self.error else None


class ExportActionBuilder:
    def __init__(
        self,
        export_client: "RdsExportClient",
        db_name: str,
        destination_bucket: str,
        export_role_identity: str,
        encryption_key_identity: str,
        destination_prefix: str | None = None,
    ):
        self._export_client = export_client
        self._db_name = db_name
        self._destination_bucket = destination_bucket
        self._export_role_identity = export_role_identity
        self._encryption_key_identity = encryption_key_identity
        self._destination_prefix = destination_prefix

    def build(
        self, record: CanonicalSnapshotRecord, resolved: ResolvedSnapshotType
    ) -> ExportRequest:
        return ExportRequest(
            source_arn=record.source_arn,
            resource_kind=resolved.resource_kind,
            export_task_identifier=export_task_identifier(
                self._db_name, record.source_arn
            ),
            destination_bucket=self._destination_bucket,
            export_role_identity=self._export_role_identity,
            encryption_key_identity=self._encryption_key_identity,
            destination_prefix=self._destination_prefix,
        )

    def submit(self, request: ExportRequest) -> SubmitOutcome:
        logger.info(
            "Submitting snapshot export task",
            extra={
                "source_arn": request.source_arn,
                "resource_kind": request.resource_kind.value,
                "export_task_identifier": request.export_task_identifier,
                "destination": request.destination,
            },
        )
        return self._export_client.submit(request)
