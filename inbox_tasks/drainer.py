"""InboxDrainer: turn every inbox message into a task, then archive it.

The loop always fetches sequence number 1.  Each successful move shifts
the remaining messages down by one, so position 1 is always the next
unhandled message.  This only holds while exactly one message is in
flight: fetches are never batched or issued ahead of the previous move.
"""

from __future__ import annotations

import structlog

from .assembler import assemble_message
from .config import ImapConfig
from .exceptions import FolderError, SinkError
from .imap_client import AsyncImapClient, SessionFactory, imap_session
from .models import Message
from .sink import MessageSink

logger = structlog.get_logger()

FIRST_MESSAGE = 1


def format_task_text(message: Message) -> str:
    """Task text for *message*: the subject as a Markdown heading, then the body."""
    subject = message.subject[0] if message.subject else ""
    header = f"## {subject}\n\n" if subject else ""
    return header + message.body


class InboxDrainer:
    """Drains the inbox into a :class:`MessageSink`."""

    def __init__(
        self,
        config: ImapConfig,
        sink: MessageSink,
        *,
        session_factory: SessionFactory = imap_session,
    ) -> None:
        self._config = config
        self._sink = sink
        self._session_factory = session_factory

    async def drain(self) -> int:
        """Handle every message in the inbox and return how many were handled.

        The first fetch, sink or move error aborts the loop and is raised
        after the folder is closed.  Nothing is retried.
        """
        async with self._session_factory(self._config) as imap:
            total = await imap.open_folder(self._config.inbox_folder)
            logger.info("inbox_opened", folder=self._config.inbox_folder, total=total)

            handled = 0
            try:
                while imap.message_count > 0:
                    message = assemble_message(
                        await imap.fetch_events(FIRST_MESSAGE),
                        seqno=FIRST_MESSAGE,
                    )
                    if message is None:
                        logger.info("inbox_fetch_empty", total=imap.message_count)
                        break

                    await self._forward(message)
                    await imap.move(message.seqno, self._config.trash_folder, uid=message.uid)
                    handled += 1
                    logger.info(
                        "message_moved",
                        uid=message.uid,
                        folder=self._config.trash_folder,
                        remaining=imap.message_count,
                    )
            finally:
                await self._close(imap)

            logger.info("inbox_drained", handled=handled)
            return handled

    async def _forward(self, message: Message) -> None:
        logger.debug(
            "message_assembled",
            uid=message.uid,
            subject=message.subject,
            sender=message.from_,
            multipart=message.multipart_boundary is not None,
        )
        try:
            await self._sink.add(format_task_text(message), [])
        except Exception as exc:
            raise SinkError(f"task store rejected message {message.uid or message.seqno}: {exc}") from exc
        logger.info("message_forwarded", uid=message.uid)

    async def _close(self, imap: AsyncImapClient) -> None:
        try:
            await imap.close_folder()
        except FolderError as exc:
            logger.error("inbox_close_failed", error=str(exc))
