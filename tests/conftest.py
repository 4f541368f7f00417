"""Shared test fixtures for the inbox-tasks test suite."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any
from unittest.mock import MagicMock

import pytest

from inbox_tasks.config import ImapConfig, ScheduleConfig, ServiceConfig, TaskStoreConfig
from inbox_tasks.exceptions import FetchError, FlagError, FolderError, MoveError
from inbox_tasks.models import (
    AttributesReceived,
    BodyReceived,
    FetchEvent,
    MessageCompleted,
    MessageStarted,
)
from inbox_tasks.sink import MessageSink


@pytest.fixture
def imap_config() -> ImapConfig:
    return ImapConfig(
        server="imap.test.com",
        port=993,
        username="testuser",
        password="testpass",
        tls=True,
        timeout_seconds=5.0,
    )


@pytest.fixture
def task_store_config() -> TaskStoreConfig:
    return TaskStoreConfig(base_url="http://test-tasks:8000", timeout_seconds=5.0)


@pytest.fixture
def service_config(imap_config: ImapConfig, task_store_config: TaskStoreConfig) -> ServiceConfig:
    return ServiceConfig(
        name="inbox-tasks-test",
        health_port=18080,
        imap=imap_config,
        tasks=task_store_config,
        schedule=ScheduleConfig(
            inbox_interval_seconds=0.01,
            trash_interval_seconds=0.01,
            cycle_timeout_seconds=1.0,
        ),
    )


# ------------------------------------------------------------------
# Message builders
# ------------------------------------------------------------------


def build_fetch_events(
    *,
    seqno: int = 1,
    uid: str = "100",
    subject: str | None = "Test Subject",
    from_addr: str = "sender@example.com",
    to_addr: str = "recipient@example.com",
    content_type: str = "text/plain; charset=utf-8",
    text: str = "Hello, World!",
) -> list[FetchEvent]:
    """Events of one message as the FETCH parser would emit them."""
    subject_block = f"Subject: {subject}\r\n\r\n" if subject is not None else "\r\n"
    return [
        MessageStarted(seqno=seqno),
        AttributesReceived(seqno=seqno, attributes={"uid": uid, "flags": ()}),
        BodyReceived(seqno=seqno, section="HEADER.FIELDS (TO)", data=f"To: {to_addr}\r\n\r\n".encode()),
        BodyReceived(seqno=seqno, section="HEADER.FIELDS (FROM)", data=f"From: {from_addr}\r\n\r\n".encode()),
        BodyReceived(seqno=seqno, section="HEADER.FIELDS (SUBJECT)", data=subject_block.encode()),
        BodyReceived(
            seqno=seqno,
            section="HEADER.FIELDS (CONTENT-TYPE)",
            data=f"Content-Type: {content_type}\r\n\r\n".encode(),
        ),
        BodyReceived(seqno=seqno, section="TEXT", data=text.encode()),
        MessageCompleted(seqno=seqno),
    ]


def build_alternative_body(
    boundary: str,
    *,
    plain: str = "Plain body",
    html: str = "<p>HTML body</p>",
    plain_headers: tuple[str, ...] = ("Content-Type: text/plain; charset=utf-8",),
    html_first: bool = False,
) -> str:
    """Build a CRLF-delimited multipart/alternative body (TEXT section only)."""
    plain_part = [f"--{boundary}", *plain_headers, "", *plain.split("\n")]
    html_part = [f"--{boundary}", "Content-Type: text/html; charset=utf-8", "", html]
    parts = html_part + plain_part if html_first else plain_part + html_part
    return "\r\n".join([*parts, f"--{boundary}--", ""])


# ------------------------------------------------------------------
# Fakes
# ------------------------------------------------------------------


class FakeImap:
    """In-memory stand-in for AsyncImapClient.

    ``folders`` maps a folder name to a list of messages, each message
    being the fetch events it produces.  Moving position 1 shifts the
    remaining messages down, like a real server.
    """

    def __init__(self, folders: dict[str, list[list[FetchEvent]]] | None = None) -> None:
        self.folders: dict[str, list[list[FetchEvent]]] = folders or {}
        self.selected: str | None = None
        self.calls: list[tuple[Any, ...]] = []
        self.fail_open: bool = False
        self.fail_fetch_at: int | None = None
        self.fail_move_at: int | None = None
        self.fail_flags: bool = False
        self.fail_close: bool = False
        self.flagged: list[tuple[str, str]] = []
        self._fetches = 0
        self._moves = 0

    @property
    def message_count(self) -> int:
        if self.selected is None:
            return 0
        return len(self.folders[self.selected])

    async def open_folder(self, name: str) -> int:
        self.calls.append(("open_folder", name))
        if self.fail_open:
            raise FolderError(f"cannot open {name}")
        self.folders.setdefault(name, [])
        self.selected = name
        return self.message_count

    async def fetch_events(self, seqno: int) -> list[FetchEvent]:
        self.calls.append(("fetch_events", seqno))
        self._fetches += 1
        if self.fail_fetch_at == self._fetches:
            raise FetchError("connection reset")
        messages = self.folders[self.selected]
        if seqno > len(messages):
            return []
        return [_renumber(event, seqno) for event in messages[seqno - 1]]

    async def move(self, seqno: int, folder: str, *, uid: str | None = None) -> None:
        self.calls.append(("move", seqno, folder, uid))
        self._moves += 1
        if self.fail_move_at == self._moves:
            raise MoveError("no space left in Trash")
        message = self.folders[self.selected].pop(seqno - 1)
        self.folders.setdefault(folder, []).append(message)

    async def add_flags(self, message_set: str, flag: str) -> None:
        self.calls.append(("add_flags", message_set, flag))
        if self.fail_flags:
            raise FlagError("STORE rejected")
        self.flagged.append((message_set, flag))

    async def close_folder(self, *, expunge: bool = False) -> None:
        self.calls.append(("close_folder", expunge))
        if self.fail_close:
            raise FolderError("CLOSE rejected")
        if expunge and self.flagged:
            self.folders[self.selected] = []
        self.selected = None

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]

    def session_factory(self):
        """A session factory yielding this fake and recording logout."""

        @asynccontextmanager
        async def _session(config: ImapConfig) -> AsyncIterator[FakeImap]:
            self.calls.append(("connect",))
            try:
                yield self
            finally:
                self.calls.append(("disconnect",))

        return _session


def _renumber(event: FetchEvent, seqno: int) -> FetchEvent:
    return replace(event, seqno=seqno)


def make_mock_imap(
    *,
    capabilities: tuple[str, ...] = ("IMAP4REV1", "MOVE", "UNSELECT"),
    greeting_capabilities: tuple[str, ...] = ("IMAP4REV1", "AUTH=PLAIN"),
    exists: bytes = b"3",
) -> MagicMock:
    """Create a mock imaplib.IMAP4_SSL with programmed responses.

    ``greeting_capabilities`` is what imaplib saw before login;
    ``capabilities`` is what a CAPABILITY command returns afterwards.
    Untagged responses queued in ``mock.queued`` are handed out (and
    cleared) by ``response()``, like imaplib does.
    """
    mock = MagicMock()
    mock.capabilities = greeting_capabilities
    mock.queued = {}
    mock.login.return_value = ("OK", [b"Logged in"])
    mock.capability.return_value = ("OK", [" ".join(capabilities).encode()])
    mock.logout.return_value = ("BYE", [b"Bye"])
    mock.select.return_value = ("OK", [exists])
    mock.close.return_value = ("OK", [b"Closed"])
    mock.unselect.return_value = ("OK", [b"Unselected"])
    mock.xatom.return_value = ("OK", [b"Moved"])
    mock.copy.return_value = ("OK", [b"Copied"])
    mock.store.return_value = ("OK", [None])
    mock.uid.return_value = ("OK", [None])
    mock.expunge.return_value = ("OK", [b"1"])
    mock.fetch.return_value = ("OK", [None])

    def response(code: str):
        return ("OK", mock.queued.pop(code, [None]))

    mock.response.side_effect = response
    return mock


class RecordingSink(MessageSink):
    """Sink that records every task and can fail on the N-th call."""

    def __init__(self, fail_at: int | None = None) -> None:
        self.tasks: list[tuple[str, list[str]]] = []
        self.fail_at = fail_at
        self.started = False
        self.stopped = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def add(self, text: str, items=()) -> object:
        if self.fail_at is not None and len(self.tasks) + 1 == self.fail_at:
            raise RuntimeError("task store unavailable")
        self.tasks.append((text, list(items)))
        return {"id": len(self.tasks)}


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
