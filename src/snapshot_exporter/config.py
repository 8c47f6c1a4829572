import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from .events import (
    NotificationKind,
    RdsEventId,
    parse_notification_kinds,
    resource_kinds_for,
)
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_ALLOWED_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _split_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _positive_int(name: str, default: str) -> int:
    value = int(os.getenv(name, default))
    if value <= 0:
        raise ValueError(f"{name} must be a positive integer.")
    return value


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Application configuration loaded from environment variables."""

    # --- Required Variables ---
    db_name: str
    notification_kinds: tuple[NotificationKind, ...]
    snapshot_bucket: str
    export_role_arn: str
    export_kms_key_arn: str

    # --- Optional Variables with Defaults ---
    snapshot_export_prefix: str | None
    glue_crawler_name: str
    state_table: str | None
    record_retention_hours: int
    export_submit_timeout_seconds: int
    max_workers: int
    lock_stripes: int
    service_name: str
    environment: str
    log_level: str

    # --- Derived Properties ---
    @property
    def record_retention_seconds(self) -> int:
        return self.record_retention_hours * 3_600

    @property
    def configured_event_ids(self) -> frozenset[RdsEventId]:
        return frozenset(kind.event_id for kind in self.notification_kinds)

    @classmethod
    def load_from_env(cls) -> "AppConfig":
        """
        Loads configuration from environment variables, performing validation and type casting.
        Fails fast with a ConfigurationError if anything is invalid.
        """
        try:
            # --- Handle required string variables ---
            db_name = os.environ["DB_NAME"]
            if not db_name.strip():
                raise ValueError("DB_NAME must not be empty.")
            event_ids = _split_list(os.environ["RDS_EVENT_IDS"])
            snapshot_types = _split_list(os.environ["RDS_SNAPSHOT_TYPES"])
            snapshot_bucket = os.environ["SNAPSHOT_BUCKET_NAME"]
            export_role_arn = os.environ["SNAPSHOT_TASK_ROLE"]
            export_kms_key_arn = os.environ["SNAPSHOT_TASK_KEY"]

            # --- Handle optional and numeric variables with validation ---
            snapshot_export_prefix = os.getenv("SNAPSHOT_EXPORT_PREFIX") or None
            glue_crawler_name = os.getenv(
                "GLUE_CRAWLER_NAME", f"{db_name}-rds-snapshot-crawler"
            )
            state_table = os.getenv("STATE_TABLE_NAME") or None

            record_retention_hours = _positive_int("RECORD_RETENTION_HOURS", "48")
            export_submit_timeout_seconds = _positive_int(
                "EXPORT_SUBMIT_TIMEOUT_SECONDS", "10"
            )
            max_workers = _positive_int("MAX_WORKERS", "4")
            lock_stripes = _positive_int("LOCK_STRIPES", "64")

            service_name = os.getenv("SERVICE_NAME", "rds-snapshot-exporter")
            environment = os.getenv("ENVIRONMENT", "prod")

            # --- Handle special-case variables like log level ---
            log_level = os.getenv("LOG_LEVEL", "INFO").upper()
            if log_level not in _ALLOWED_LOG_LEVELS:
                raise ValueError(
                    f"LOG_LEVEL must be one of {_ALLOWED_LOG_LEVELS}, not '{log_level}'"
                )

            # --- Notification kinds are validated against the static table ---
            notification_kinds = parse_notification_kinds(event_ids, snapshot_types)

            # DB_SNAPSHOT_TYPES is optional; when present it must agree with the table.
            declared_resource_kinds = _split_list(os.getenv("DB_SNAPSHOT_TYPES", ""))
            if declared_resource_kinds:
                expected = [
                    kind.value
                    for kind in resource_kinds_for(
                        NotificationKind.from_strings(e, t)
                        for e, t in zip(event_ids, snapshot_types)
                    )
                ]
                if declared_resource_kinds != expected:
                    raise ConfigurationError(
                        "DB_SNAPSHOT_TYPES does not match the configured event ids",
                        context={
                            "declared": declared_resource_kinds,
                            "expected": expected,
                        },
                    )

        except KeyError as e:
            raise ConfigurationError(
                f"Missing required environment variable: {e.args[0]}"
            ) from e
        except (ValueError, TypeError) as e:
            raise ConfigurationError(
                f"Invalid value for an environment variable: {e}"
            ) from e

        return cls(
            db_name=db_name,
            notification_kinds=notification_kinds,
            snapshot_bucket=snapshot_bucket,
            export_role_arn=export_role_arn,
            export_kms_key_arn=export_kms_key_arn,
            snapshot_export_prefix=snapshot_export_prefix,
            glue_crawler_name=glue_crawler_name,
            state_table=state_table,
            record_retention_hours=record_retention_hours,
            export_submit_timeout_seconds=export_submit_timeout_seconds,
            max_workers=max_workers,
            lock_stripes=lock_stripes,
            service_name=service_name,
            environment=environment,
            log_level=log_level,
        )


# --- Singleton Factory Function (Lazy-loaded and Cached) ---
@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """
    Loads the application configuration from environment variables.
    The result is cached using lru_cache, so the environment is only read once
    on the first call. This avoids import-time side effects.
    """
    logger.info("Loading application configuration from environment...")
    return AppConfig.load_from_env()
