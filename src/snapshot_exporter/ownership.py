# src/snapshot_exporter/ownership.py

"""
Decides whether a snapshot belongs to the database this exporter serves.

Automated snapshots carry the database name in their identifier
(``rds:<db>-YYYY-MM-DD-HH-MM``). AWS Backup snapshots are named after the
backup or copy job (``awsbackup:job-<id>``, ``awsbackup:copyjob-<id>``), so
the job is looked up to find the protected resource. Manual snapshot names
are free-form and are always accepted.
"""

import logging
import re

from .clients import BackupJobClient
from .events import RdsSnapshotType
from .resolver import ResolvedSnapshotType
from .schemas import SnapshotNotification

logger = logging.getLogger(__name__)

_BACKUP_JOB_PREFIX = "awsbackup:job-"
_COPY_JOB_PREFIX = "awsbackup:copyjob-"


class SnapshotOwnershipFilter:
    def __init__(self, db_name: str, backup_jobs: BackupJobClient | None = None):
        self._db_name = db_name
        self._backup_jobs = backup_jobs
        # RDS stores instance and cluster identifiers in lowercase.
        self._automated_pattern = re.compile(
            r"^rds:" + re.escape(db_name) + r"-\d{4}-\d{2}-\d{2}-\d{2}-\d{2}$",
            re.IGNORECASE,
        )
        self._resource_pattern = re.compile(
            r"^arn:[^:]+:rds:[^:]*:\d*:(db|cluster):" + re.escape(db_name) + r"$",
            re.IGNORECASE,
        )

    def owns(
        self, notification: SnapshotNotification, resolved: ResolvedSnapshotType
    ) -> bool:
        source_id = notification.source_identifier

        if resolved.snapshot_type is RdsSnapshotType.AUTOMATED:
            return bool(self._automated_pattern.match(source_id))

        if source_id.startswith(_BACKUP_JOB_PREFIX) or source_id.startswith(
            _COPY_JOB_PREFIX
        ):
            return self._backup_snapshot_owned(source_id)

        if resolved.snapshot_type is RdsSnapshotType.BACKUP:
            # Copy notifications can name the copied automated snapshot directly.
            return bool(self._automated_pattern.match(source_id))

        return True

    def _backup_snapshot_owned(self, source_id: str) -> bool:
        if self._backup_jobs is None:
            logger.debug(
                "No backup job client; accepting backup snapshot unchecked",
                extra={"source_identifier": source_id},
            )
            return True

        if source_id.startswith(_COPY_JOB_PREFIX):
            resource_arn = self._backup_jobs.resource_arn_for_copy_job(
                source_id[len(_COPY_JOB_PREFIX):], source_id
            )
        else:
            resource_arn = self._backup_jobs.resource_arn_for_backup_job(
                source_id[len(_BACKUP_JOB_PREFIX):], source_id
            )
        owned = bool(self._resource_pattern.match(resource_arn))
        logger.debug(
            "Resolved backup snapshot owner",
            extra={
                "source_identifier": source_id,
                "resource_arn": resource_arn,
                "owned": owned,
            },
        )
        return owned
