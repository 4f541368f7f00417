"""TrashJanitor: permanently remove everything in the Trash folder."""

from __future__ import annotations

import structlog

from .config import ImapConfig
from .exceptions import FlagError, FolderError, MailError
from .imap_client import DELETED, SessionFactory, imap_session

logger = structlog.get_logger()

ALL_MESSAGES = "1:*"


class TrashJanitor:
    """Flags every Trash message ``\\Deleted`` and expunges on close."""

    def __init__(
        self,
        config: ImapConfig,
        *,
        session_factory: SessionFactory = imap_session,
    ) -> None:
        self._config = config
        self._session_factory = session_factory

    async def cleanup(self) -> int:
        """Purge the Trash folder and return the number of messages it held.

        Flagging and closing are both attempted and their failures
        logged.  The first failure is raised once the folder is closed.
        """
        folder = self._config.trash_folder
        async with self._session_factory(self._config) as imap:
            total = await imap.open_folder(folder)
            if total == 0:
                logger.debug("trash_empty", folder=folder)
                return 0

            failure: MailError | None = None
            try:
                await imap.add_flags(ALL_MESSAGES, DELETED)
            except FlagError as exc:
                logger.error("trash_flag_failed", folder=folder, error=str(exc))
                failure = exc

            try:
                await imap.close_folder(expunge=True)
            except FolderError as exc:
                logger.error("trash_expunge_failed", folder=folder, error=str(exc))
                failure = failure or exc

            if failure is not None:
                raise failure

            logger.info("trash_purged", folder=folder, purged=total)
            return total
