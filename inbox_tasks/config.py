"""Service configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars.
IMAP credentials have no defaults: a missing value fails at start-up
instead of attempting an unauthenticated connection.
"""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings


class ImapConfig(BaseSettings):
    """IMAP server connection settings."""

    model_config = {"env_prefix": "MAIL_IMAP_"}

    server: str = Field(description="IMAP server hostname")
    port: int = Field(description="IMAP server port")
    username: str = Field(description="IMAP login username")
    password: SecretStr = Field(description="IMAP login password")
    tls: bool = Field(description="Require an encrypted (IMAPS) transport")
    timeout_seconds: float = Field(
        default=30.0,
        description="Socket timeout for every IMAP round trip",
    )
    inbox_folder: str = Field(default="INBOX", description="Folder drained into the task store")
    trash_folder: str = Field(default="Trash", description="Folder handled messages are moved to")


class TaskStoreConfig(BaseSettings):
    """Task store HTTP API settings."""

    model_config = {"env_prefix": "TASKS_"}

    base_url: str = Field(
        default="http://tasks:8000",
        description="Base URL of the task store API",
    )
    path: str = Field(default="/v1/tasks", description="Endpoint that creates a task")
    api_token: SecretStr | None = Field(
        default=None,
        description="Bearer token sent with every request",
    )
    timeout_seconds: float = Field(default=30.0, description="HTTP request timeout")


class ScheduleConfig(BaseSettings):
    """Intervals of the periodic inbox and trash cycles.

    ``cycle_timeout_seconds`` bounds a whole cycle, not one message.  A
    drain that runs out of time keeps every move it already made and is
    reported as failed; the next cycle continues with what is left.  Size
    it for the largest backlog expected between two cycles.
    """

    model_config = {"env_prefix": "SCHEDULE_"}

    inbox_interval_seconds: float = Field(
        default=60.0,
        description="Seconds between inbox drain cycles",
    )
    trash_interval_seconds: float = Field(
        default=60.0,
        description="Seconds between trash purge cycles",
    )
    cycle_timeout_seconds: float = Field(
        default=300.0,
        description="Upper bound on a whole cycle, including every message of a drain",
    )


class ServiceConfig(BaseSettings):
    """Root configuration for the service process.

    Nested configs are populated from their own env-var prefixes.
    """

    model_config = {"env_prefix": "SERVICE_"}

    name: str = Field(default="inbox-tasks", description="Service name used in logs and health")
    health_port: int = Field(default=8080, description="Port for health probe endpoints")
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=True, description="Render logs as JSON lines")

    imap: ImapConfig = Field(default_factory=ImapConfig)
    tasks: TaskStoreConfig = Field(default_factory=TaskStoreConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
