"""Error taxonomy for mail cycles.

Every exception raised by an inbox or trash cycle derives from
:class:`MailError` so the scheduler can log it and keep running.
"""

from __future__ import annotations


class MailError(Exception):
    """Base class for all mail cycle failures."""


class MailConnectionError(MailError):
    """DNS, TLS, socket or authentication failure."""


class FolderError(MailError):
    """A folder could not be selected or closed."""


class FetchError(MailError):
    """Protocol error while fetching or assembling a message."""


class SinkError(MailError):
    """The task store rejected or failed to record a message."""


class MoveError(MailError):
    """A handled message could not be moved out of the inbox."""


class FlagError(MailError):
    """Flags could not be added to messages."""
