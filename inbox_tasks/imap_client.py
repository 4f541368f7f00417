"""Async IMAP client wrapping stdlib imaplib with asyncio.to_thread.

Messages are addressed by sequence number.  The client keeps the live
message count of the selected folder up to date from the server's
untagged ``EXISTS`` and ``EXPUNGE`` responses, so a caller draining the
folder sees it shrink after each move.
"""

from __future__ import annotations

import asyncio
import imaplib
import re
import threading
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, TypeVar

import structlog

from .assembler import FETCH_SECTIONS
from .config import ImapConfig
from .exceptions import FetchError, FlagError, FolderError, MailConnectionError, MoveError
from .models import (
    AttributesReceived,
    BodyReceived,
    FetchEvent,
    MessageCompleted,
    MessageStarted,
)

logger = structlog.get_logger()

_T = TypeVar("_T")

DELETED = "\\Deleted"

_FETCH_ITEMS = "(UID FLAGS {})".format(" ".join(f"BODY.PEEK[{s}]" for s in FETCH_SECTIONS))

_MESSAGE_START = re.compile(rb"^\s*(\d+) \(")
_SECTION = re.compile(rb"BODY\[([^\]]*)\](?:<\d+>)?\s*\{\d+\}\s*$", re.IGNORECASE)
_UID = re.compile(rb"\bUID (\d+)", re.IGNORECASE)
_FLAGS = re.compile(rb"\bFLAGS \(([^)]*)\)", re.IGNORECASE)
_MAILBOX_SPECIALS = re.compile(r'[\s"(){%*\\]')


def quote_mailbox(name: str) -> str:
    """Quote a mailbox name for use as a command argument if needed."""
    if name.startswith('"') or not _MAILBOX_SPECIALS.search(name):
        return name
    escaped = name.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _normalize_section(raw: bytes) -> str:
    """``header.fields ("TO")`` -> ``HEADER.FIELDS (TO)``."""
    text = raw.decode("ascii", errors="replace").replace('"', "").upper()
    return " ".join(text.split())


def _parse_attributes(chunk: bytes) -> dict[str, Any]:
    attributes: dict[str, Any] = {}
    uid = _UID.search(chunk)
    if uid:
        attributes["uid"] = uid.group(1).decode()
    flags = _FLAGS.search(chunk)
    if flags:
        attributes["flags"] = tuple(flags.group(1).decode(errors="replace").split())
    return attributes


def parse_fetch_response(data: list[Any]) -> list[FetchEvent]:
    """Break ``imaplib`` FETCH data into ordered fetch events.

    ``imaplib`` returns a literal-bearing item as a ``(prefix, literal)``
    tuple and the remaining text as plain bytes.  A message starts with
    ``b"<seqno> ("`` and ends with the closing parenthesis of the last
    non-literal chunk.
    """
    events: list[FetchEvent] = []
    current: int | None = None

    for item in data:
        if item is None:
            continue
        if isinstance(item, tuple):
            chunk, literal = item[0], item[1]
        else:
            chunk, literal = item, None

        start = _MESSAGE_START.match(chunk)
        if start:
            if current is not None:
                events.append(MessageCompleted(seqno=current))
            current = int(start.group(1))
            events.append(MessageStarted(seqno=current))
        if current is None:
            continue

        attributes = _parse_attributes(chunk)
        if attributes:
            events.append(AttributesReceived(seqno=current, attributes=attributes))

        if literal is not None:
            section = _SECTION.search(chunk)
            if section is None:
                events.append(
                    BodyReceived(
                        seqno=current,
                        section="",
                        data=literal,
                        error=f"unrecognised fetch item {chunk!r}",
                    )
                )
            else:
                events.append(
                    BodyReceived(seqno=current, section=_normalize_section(section.group(1)), data=literal)
                )
        elif chunk.rstrip().endswith(b")"):
            events.append(MessageCompleted(seqno=current))
            current = None

    if current is not None:
        events.append(MessageCompleted(seqno=current))
    return events


class AsyncImapClient:
    """Async-friendly IMAP client for one session.

    All blocking ``imaplib`` operations are wrapped with
    ``asyncio.to_thread()`` to avoid blocking the event loop.  One
    instance must only ever be used by one cycle.

    Cancelling an awaiting coroutine does not stop its worker thread.
    While a call is still running there, :meth:`close_folder` sends
    nothing and :meth:`disconnect` shuts the socket down instead of
    logging out, so two threads never talk on one connection.
    """

    def __init__(self, config: ImapConfig) -> None:
        self._config = config
        self._conn: imaplib.IMAP4_SSL | imaplib.IMAP4 | None = None
        self._folder: str | None = None
        self._total = 0
        self._idle = threading.Event()
        self._idle.set()

    @property
    def message_count(self) -> int:
        """Live message count of the selected folder."""
        return self._total

    @property
    def folder(self) -> str | None:
        return self._folder

    @property
    def busy(self) -> bool:
        """True while a blocking call is still running in a worker thread."""
        return not self._idle.is_set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the transport and log in."""
        try:
            await self._call(self._connect_sync)
        except (imaplib.IMAP4.error, OSError) as exc:
            self._conn = None
            raise MailConnectionError(f"cannot connect to {self._config.server}: {exc}") from exc
        logger.info("imap_connected", server=self._config.server, tls=self._config.tls)

    def _connect_sync(self) -> None:
        if self._config.tls:
            self._conn = imaplib.IMAP4_SSL(
                self._config.server, self._config.port, timeout=self._config.timeout_seconds
            )
        else:
            self._conn = imaplib.IMAP4(
                self._config.server, self._config.port, timeout=self._config.timeout_seconds
            )
        self._conn.login(self._config.username, self._config.password.get_secret_value())

        # imaplib keeps the pre-login greeting capabilities; servers often add
        # MOVE, UIDPLUS and UNSELECT only once authenticated.
        status, data = self._conn.capability()
        if status == "OK" and data and data[-1]:
            self._conn.capabilities = tuple(data[-1].decode("ascii", errors="replace").upper().split())

    async def disconnect(self) -> None:
        """Log out.  Errors are logged; the session is dropped regardless.

        If an earlier call is still running in its worker thread, the
        transport is shut down instead, which makes that call fail fast.
        """
        if self._conn is None:
            return
        conn = self._conn
        try:
            if self.busy:
                logger.warning("imap_call_in_flight_shutting_down", server=self._config.server)
                conn.shutdown()
            else:
                await self._call(conn.logout)
        except (imaplib.IMAP4.error, OSError) as exc:
            logger.warning("imap_logout_failed", error=str(exc))
        finally:
            self._conn = None
            self._folder = None
            self._total = 0
        logger.info("imap_disconnected")

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def open_folder(self, name: str) -> int:
        """Select *name* read-write and return its message count."""
        conn = self._require_conn()
        try:
            status, data = await self._call(conn.select, quote_mailbox(name))
        except (imaplib.IMAP4.error, OSError) as exc:
            raise FolderError(f"cannot open {name}: {exc}") from exc
        if status != "OK":
            raise FolderError(f"cannot open {name}: {_describe(data)}")

        # select() leaves EXISTS queued; drop it so later refreshes only see new updates.
        conn.response("EXISTS")
        conn.response("EXPUNGE")
        self._folder = name
        self._total = int(data[0]) if data and data[0] else 0
        logger.debug("imap_folder_opened", folder=name, total=self._total)
        return self._total

    async def close_folder(self, *, expunge: bool = False) -> None:
        """Close the selected folder.

        With *expunge* the folder is closed with ``CLOSE``, which removes
        every message flagged ``\\Deleted``.  Otherwise ``UNSELECT`` is
        used when the server supports it.  Nothing is sent while an
        earlier call is still in flight.
        """
        if self._folder is None:
            return
        conn = self._require_conn()
        folder = self._folder
        if self.busy:
            self._folder = None
            logger.warning("imap_close_skipped_call_in_flight", folder=folder)
            return
        try:
            if expunge or "UNSELECT" not in conn.capabilities:
                status, data = await self._call(conn.close)
            else:
                status, data = await self._call(conn.unselect)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise FolderError(f"cannot close {folder}: {exc}") from exc
        finally:
            self._folder = None
        if status != "OK":
            raise FolderError(f"cannot close {folder}: {_describe(data)}")
        logger.debug("imap_folder_closed", folder=folder, expunge=expunge)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def fetch_events(self, seqno: int) -> list[FetchEvent]:
        """FETCH the headers, TEXT and attributes of message *seqno*.

        A ``NO`` response (message vanished) yields no events.
        """
        conn = self._require_conn()
        try:
            status, data = await self._call(conn.fetch, str(seqno), _FETCH_ITEMS)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise FetchError(f"fetch of message {seqno} failed: {exc}") from exc
        self._refresh_count()
        if status != "OK":
            logger.info("imap_fetch_empty", seqno=seqno, response=_describe(data))
            return []
        return parse_fetch_response(data)

    async def move(self, seqno: int, folder: str, *, uid: str | None = None) -> None:
        """Move message *seqno* to *folder*.

        Uses ``MOVE`` when advertised, otherwise copies, flags and
        expunges.  Without ``UIDPLUS`` the fallback expunges every
        message flagged ``\\Deleted`` in the folder.
        """
        conn = self._require_conn()
        expunged = 0
        try:
            expunged = await self._call(self._move_sync, conn, seqno, folder, uid)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise MoveError(f"cannot move message {seqno} to {folder}: {exc}") from exc
        finally:
            self._refresh_count(expunged)
        logger.debug("imap_message_moved", seqno=seqno, folder=folder, total=self._total)

    def _move_sync(self, conn: imaplib.IMAP4, seqno: int, folder: str, uid: str | None) -> int:
        """Run the move; return expunges consumed by ``expunge()`` itself."""
        target = quote_mailbox(folder)
        if "MOVE" in conn.capabilities:
            _check(conn.xatom("MOVE", str(seqno), target), "MOVE")
            return 0

        _check(conn.copy(str(seqno), target), "COPY")
        _check(conn.store(str(seqno), "+FLAGS", f"({DELETED})"), "STORE")
        if uid and "UIDPLUS" in conn.capabilities:
            _check(conn.uid("EXPUNGE", uid), "UID EXPUNGE")
            return 0
        status, data = conn.expunge()
        _check((status, data), "EXPUNGE")
        return len([item for item in data if item])

    async def add_flags(self, message_set: str, flag: str) -> None:
        """Add *flag* to every message in *message_set* (e.g. ``1:*``)."""
        conn = self._require_conn()
        try:
            status, data = await self._call(conn.store, message_set, "+FLAGS", f"({flag})")
        except (imaplib.IMAP4.error, OSError) as exc:
            raise FlagError(f"cannot flag {message_set} {flag}: {exc}") from exc
        if status != "OK":
            raise FlagError(f"cannot flag {message_set} {flag}: {_describe(data)}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_conn(self) -> imaplib.IMAP4:
        if self._conn is None:
            raise MailConnectionError("Not connected")
        return self._conn

    async def _call(self, func: Callable[..., _T], *args: Any) -> _T:
        """Run a blocking call in a worker thread, tracking that it is in flight."""
        self._idle.clear()
        return await asyncio.to_thread(self._run_in_worker, func, *args)

    def _run_in_worker(self, func: Callable[..., _T], *args: Any) -> _T:
        try:
            return func(*args)
        finally:
            self._idle.set()

    def _refresh_count(self, expunged: int = 0) -> None:
        """Apply queued EXISTS / EXPUNGE responses to the live count.

        imaplib does not keep the relative order of the two.  EXISTS is
        applied first and expunges subtracted afterwards, which can only
        under-count; an under-counted folder is finished on the next cycle.
        """
        if self._conn is None or self.busy:
            return
        _, exists = self._conn.response("EXISTS")
        _, queued = self._conn.response("EXPUNGE")
        reported = [item for item in exists if item]
        if reported:
            self._total = int(reported[-1])
        removed = expunged + len([item for item in queued if item])
        self._total = max(self._total - removed, 0)


SessionFactory = Callable[[ImapConfig], AbstractAsyncContextManager[AsyncImapClient]]


@asynccontextmanager
async def imap_session(config: ImapConfig) -> AsyncIterator[AsyncImapClient]:
    """Connect, yield the client, and always log out."""
    client = AsyncImapClient(config)
    await client.connect()
    try:
        yield client
    finally:
        await client.disconnect()


def _check(response: tuple[str, list[Any]], command: str) -> None:
    status, data = response
    if status != "OK":
        raise imaplib.IMAP4.error(f"{command} failed: {_describe(data)}")


def _describe(data: list[Any] | None) -> str:
    if not data:
        return ""
    return " ".join(
        item.decode(errors="replace") if isinstance(item, bytes) else str(item)
        for item in data
        if item is not None
    )
