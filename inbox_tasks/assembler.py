"""Assemble one :class:`Message` from the events of a FETCH response.

The header fields, the TEXT section and the message attributes arrive
as independent events in no guaranteed order.  :class:`MessageAssembler`
accumulates them into a single record keyed by the sequence number of
the ``MessageStarted`` event and only finalizes it on
``MessageCompleted``.
"""

from __future__ import annotations

import email.parser
import email.policy
import re
from collections.abc import Iterable

import structlog

from .exceptions import FetchError
from .models import (
    AttributesReceived,
    BodyReceived,
    FetchEvent,
    Message,
    MessageCompleted,
    MessageStarted,
)
from .multipart import extract_plain_text

logger = structlog.get_logger()

SECTION_TEXT = "TEXT"
SECTION_SUBJECT = "HEADER.FIELDS (SUBJECT)"
SECTION_FROM = "HEADER.FIELDS (FROM)"
SECTION_TO = "HEADER.FIELDS (TO)"
SECTION_CONTENT_TYPE = "HEADER.FIELDS (CONTENT-TYPE)"

#: Sections requested for every message, in request order.
FETCH_SECTIONS = (
    SECTION_TO,
    SECTION_FROM,
    SECTION_SUBJECT,
    SECTION_CONTENT_TYPE,
    SECTION_TEXT,
)

_HEADER_SECTIONS = {
    SECTION_SUBJECT: ("subject", "subject"),
    SECTION_FROM: ("from", "from_"),
    SECTION_TO: ("to", "to"),
}

_BOUNDARY_PARAM = re.compile(r"boundary=", re.IGNORECASE)
_DOUBLE_QUOTED = re.compile(r'"([^"]+)"')
_SINGLE_QUOTED = re.compile(r"'([^']+)'")


def parse_header_values(raw: bytes, name: str) -> list[str]:
    """Return every decoded value of header *name* in a header block."""
    parser = email.parser.BytesHeaderParser(policy=email.policy.default)
    headers = parser.parsebytes(raw)
    return [str(value) for value in headers.get_all(name, [])]


def parse_multipart_boundary(content_type: str) -> str | None:
    """Extract the boundary of a ``multipart/alternative`` Content-Type.

    Returns ``None`` for any other content type, or when the header has
    no ``boundary=`` parameter.
    """
    if "multipart/alternative" not in content_type.lower():
        return None

    parts = _BOUNDARY_PARAM.split(content_type)
    if len(parts) < 2:
        return None

    boundary = _DOUBLE_QUOTED.sub(r"\1", parts[1])
    boundary = _SINGLE_QUOTED.sub(r"\1", boundary)
    return boundary.replace("\r\n", "")


class MessageAssembler:
    """Accumulates the fetch events of one sequence number into a Message."""

    def __init__(self, seqno: int = 1) -> None:
        self._seqno = seqno
        self._message: Message | None = None
        self._body_chunks: list[str] = []
        self._completed = False

    @property
    def completed(self) -> bool:
        return self._completed

    def handle(self, event: FetchEvent) -> None:
        """Apply a single fetch event to the record."""
        if event.seqno != self._seqno:
            logger.debug("fetch_event_ignored", seqno=event.seqno, expected=self._seqno)
            return

        if event.error is not None:
            raise FetchError(f"fetch of message {event.seqno} failed: {event.error}")

        if isinstance(event, MessageStarted):
            self._message = Message(seqno=event.seqno)
            return

        if self._message is None:
            raise FetchError(f"{type(event).__name__} received before message {event.seqno} started")

        if isinstance(event, BodyReceived):
            self._handle_body(self._message, event)
        elif isinstance(event, AttributesReceived):
            self._message.attributes.update(event.attributes)
        elif isinstance(event, MessageCompleted):
            self._finalize(self._message)

    def result(self) -> Message | None:
        """Return the assembled message, or ``None`` if none was fetched."""
        if self._message is None:
            return None
        if not self._completed:
            raise FetchError(f"fetch ended before message {self._seqno} completed")
        return self._message

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _handle_body(self, message: Message, event: BodyReceived) -> None:
        if event.section == SECTION_TEXT:
            self._body_chunks.append(event.data.decode("utf-8", errors="replace"))
        elif event.section in _HEADER_SECTIONS:
            header, attr = _HEADER_SECTIONS[event.section]
            setattr(message, attr, parse_header_values(event.data, header))
        elif event.section == SECTION_CONTENT_TYPE:
            message.multipart_boundary = parse_multipart_boundary(
                event.data.decode("utf-8", errors="replace")
            )
        else:
            logger.debug("fetch_section_ignored", seqno=message.seqno, section=event.section)

    def _finalize(self, message: Message) -> None:
        message.raw_body = "".join(self._body_chunks)
        if message.multipart_boundary:
            message.body = extract_plain_text(message.raw_body, message.multipart_boundary)
        else:
            message.body = message.raw_body
        self._completed = True


def assemble_message(events: Iterable[FetchEvent], seqno: int = 1) -> Message | None:
    """Feed *events* through a :class:`MessageAssembler` and return its result."""
    assembler = MessageAssembler(seqno)
    for event in events:
        assembler.handle(event)
    return assembler.result()
