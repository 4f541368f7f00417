"""Data models: the transient message record, fetch events, and the
reports exposed by the service.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


@dataclass
class Message:
    """One message assembled from a single FETCH.

    ``seqno`` is the position in the mailbox at fetch time.  It shifts as
    the mailbox is drained and must not be kept beyond the current
    iteration.
    """

    seqno: int
    subject: list[str] = field(default_factory=list)
    from_: list[str] = field(default_factory=list)
    to: list[str] = field(default_factory=list)
    raw_body: str = ""
    multipart_boundary: str | None = None
    body: str = ""
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def uid(self) -> str | None:
        return self.attributes.get("uid")


# ----------------------------------------------------------------------
# Fetch events
# ----------------------------------------------------------------------


@dataclass(frozen=True, kw_only=True)
class FetchEvent:
    """Base for the events a FETCH response is broken into."""

    seqno: int
    error: str | None = None


@dataclass(frozen=True, kw_only=True)
class MessageStarted(FetchEvent):
    pass


@dataclass(frozen=True, kw_only=True)
class BodyReceived(FetchEvent):
    section: str
    data: bytes


@dataclass(frozen=True, kw_only=True)
class AttributesReceived(FetchEvent):
    attributes: dict[str, Any]


@dataclass(frozen=True, kw_only=True)
class MessageCompleted(FetchEvent):
    pass


# ----------------------------------------------------------------------
# Service models
# ----------------------------------------------------------------------


class CycleKind(str, Enum):
    """The two periodic operations."""

    INBOX = "inbox"
    TRASH = "trash"


class ServiceStatus(str, Enum):
    """Runtime status of the service."""

    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class CycleReport(BaseModel):
    """Outcome of one inbox or trash cycle."""

    kind: CycleKind = Field(description="Which operation ran")
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Cycle start (UTC)",
    )
    finished_at: datetime | None = Field(default=None, description="Cycle end (UTC)")
    processed: int = Field(default=0, description="Messages forwarded or purged")
    error: str | None = Field(default=None, description="Error that aborted the cycle")

    @property
    def ok(self) -> bool:
        return self.error is None


class HealthStatus(BaseModel):
    """Response model for the /health endpoint."""

    service_name: str = Field(description="Name of the service")
    status: ServiceStatus = Field(description="Current service status")
    uptime_seconds: float = Field(description="Seconds since the service started")
    cycles: dict[str, CycleReport] = Field(
        default_factory=dict,
        description="Most recent report per cycle kind",
    )


class TaskRequest(BaseModel):
    """Body of a task creation request."""

    text: str = Field(description="Task text, Markdown")
    items: list[str] = Field(default_factory=list, description="Associated checklist items")
