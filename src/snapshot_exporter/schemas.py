# In src/snapshot_exporter/schemas.py

import json
import re
from datetime import datetime

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .events import ResourceKind
from .exceptions import MalformedNotificationError

_EVENT_ID_PATTERN = re.compile(r"(RDS-EVENT-\d{4})\s*$")
_TOPIC_ARN_PATTERN = re.compile(
    r"^arn:(?P<partition>[^:]+):sns:(?P<region>[^:]+):(?P<account>\d{12}):.+$"
)


# --- Runtime Validation (using Pydantic) ---


class RdsEventMessage(BaseModel):
    """
    Pydantic model for the JSON body RDS publishes to SNS.

    The ``Event ID`` field is a documentation link such as
    ``http://docs.amazonwebservices.com/.../USER_Events.html#RDS-EVENT-0091``;
    only the trailing event id is kept.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event_source: str | None = Field(None, alias="Event Source")
    event_time: datetime = Field(..., alias="Event Time")
    identifier_link: str | None = Field(None, alias="Identifier Link")
    source_id: str = Field(..., alias="Source ID", min_length=1)
    source_arn: str | None = Field(None, alias="Source ARN")
    event_id: str = Field(..., alias="Event ID")
    event_message: str = Field("", alias="Event Message")

    @field_validator("event_id")
    @classmethod
    def extract_event_id(cls, value: str) -> str:
        match = _EVENT_ID_PATTERN.search(value)
        if not match:
            raise ValueError(f"no RDS event id found in '{value}'")
        return match.group(1)

    @field_validator("event_time", mode="before")
    @classmethod
    def parse_rds_event_time(cls, value):
        # RDS uses "2024-01-02 03:04:05.678" which pydantic rejects.
        if isinstance(value, str) and " " in value.strip():
            value = value.strip().replace(" ", "T", 1)
        return value

    @field_validator("source_arn")
    @classmethod
    def blank_arn_is_missing(cls, value: str | None) -> str | None:
        return value or None


class SnapshotNotification(BaseModel):
    """A single RDS snapshot lifecycle notification, transport details included."""

    model_config = ConfigDict(frozen=True)

    event_id: str
    source_arn: str | None
    source_identifier: str
    timestamp: datetime
    message: str
    message_id: str | None = None
    topic_arn: str | None = None

    def canonical_arn(self, resource_kind: ResourceKind) -> str:
        """
        The provider ARN of the snapshot. Falls back to building it from the
        SNS topic's partition, region and account when RDS did not send one.
        """
        if self.source_arn:
            return self.source_arn
        match = _TOPIC_ARN_PATTERN.match(self.topic_arn or "")
        if not match:
            raise MalformedNotificationError(
                "no Source ARN and no topic ARN to derive it from",
                context={
                    "source_identifier": self.source_identifier,
                    "topic_arn": self.topic_arn,
                },
            )
        return (
            f"arn:{match['partition']}:rds:{match['region']}:{match['account']}:"
            f"{resource_kind.value}:{self.source_identifier}"
        )


def parse_notification(
    body: str, message_id: str | None = None, topic_arn: str | None = None
) -> SnapshotNotification:
    """
    Parses an SNS message body into a SnapshotNotification.
    Raises MalformedNotificationError for anything that is not an RDS event.
    """
    try:
        raw = json.loads(body)
    except (json.JSONDecodeError, TypeError) as e:
        raise MalformedNotificationError(
            f"message body is not JSON: {e}",
            context={"message_id": message_id},
            correlation_id=message_id,
        ) from e
    if not isinstance(raw, dict):
        raise MalformedNotificationError(
            "message body is not a JSON object",
            context={"message_id": message_id},
            correlation_id=message_id,
        )

    try:
        parsed = RdsEventMessage.model_validate(raw)
    except pydantic.ValidationError as e:
        raise MalformedNotificationError(
            "message body failed validation",
            context={
                "message_id": message_id,
                "validation_errors": e.errors(
                    include_url=False, include_context=False, include_input=False
                ),
            },
            correlation_id=message_id,
        ) from e

    return SnapshotNotification(
        event_id=parsed.event_id,
        source_arn=parsed.source_arn,
        source_identifier=parsed.source_id,
        timestamp=parsed.event_time,
        message=parsed.event_message,
        message_id=message_id,
        topic_arn=topic_arn,
    )
