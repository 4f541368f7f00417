"""inbox-tasks: drain an IMAP inbox into a task store.

Public API re-exported here for convenience::

    from inbox_tasks import InboxDrainer, MailService, extract_plain_text
"""

from .assembler import MessageAssembler, assemble_message, parse_multipart_boundary
from .config import ImapConfig, ScheduleConfig, ServiceConfig, TaskStoreConfig
from .drainer import InboxDrainer, format_task_text
from .exceptions import (
    FetchError,
    FlagError,
    FolderError,
    MailConnectionError,
    MailError,
    MoveError,
    SinkError,
)
from .imap_client import AsyncImapClient, imap_session, parse_fetch_response
from .janitor import TrashJanitor
from .logging import setup_logging
from .models import (
    AttributesReceived,
    BodyReceived,
    CycleKind,
    CycleReport,
    FetchEvent,
    Message,
    MessageCompleted,
    MessageStarted,
)
from .multipart import extract_plain_text
from .service import MailService
from .sink import MessageSink, TaskStoreClient

__all__ = [
    "AsyncImapClient",
    "AttributesReceived",
    "BodyReceived",
    "CycleKind",
    "CycleReport",
    "FetchError",
    "FetchEvent",
    "FlagError",
    "FolderError",
    "ImapConfig",
    "InboxDrainer",
    "MailConnectionError",
    "MailError",
    "MailService",
    "Message",
    "MessageAssembler",
    "MessageCompleted",
    "MessageSink",
    "MessageStarted",
    "MoveError",
    "ScheduleConfig",
    "ServiceConfig",
    "SinkError",
    "TaskStoreClient",
    "TrashJanitor",
    "assemble_message",
    "extract_plain_text",
    "format_task_text",
    "imap_session",
    "parse_fetch_response",
    "parse_multipart_boundary",
    "setup_logging",
]
