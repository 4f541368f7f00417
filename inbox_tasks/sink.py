"""Message sinks: where assembled messages end up.

:class:`MessageSink` is the boundary the inbox drainer talks to.
:class:`TaskStoreClient` implements it over the task store's HTTP API.
"""

from __future__ import annotations

import abc
from collections.abc import Sequence

import httpx
import structlog

from .config import TaskStoreConfig
from .models import TaskRequest

logger = structlog.get_logger()


class MessageSink(abc.ABC):
    """Receives one task per handled message.

    A successful :meth:`add` is what allows the message to be moved out
    of the inbox, so implementations must raise on any failure.
    """

    async def start(self) -> None:
        """Acquire resources.  The default does nothing."""

    async def stop(self) -> None:
        """Release resources.  The default does nothing."""

    @abc.abstractmethod
    async def add(self, text: str, items: Sequence[str] = ()) -> object:
        """Record a task with *text* and associated *items*."""
        ...


class TaskStoreClient(MessageSink):
    """Creates tasks through the task store HTTP API."""

    def __init__(self, config: TaskStoreConfig) -> None:
        self._config = config
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        headers = {"Accept": "application/json"}
        if self._config.api_token is not None:
            headers["Authorization"] = f"Bearer {self._config.api_token.get_secret_value()}"

        self._client = httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=httpx.Timeout(self._config.timeout_seconds),
            headers=headers,
        )
        logger.info("task_store_client_started", base_url=self._config.base_url)

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("task_store_client_stopped")

    async def add(self, text: str, items: Sequence[str] = ()) -> object:
        """POST a task to the store and return its decoded JSON response.

        Raises :class:`httpx.HTTPStatusError` on non-2xx responses.
        """
        if self._client is None:
            raise AssertionError("Client not started")

        request = TaskRequest(text=text, items=list(items))
        response = await self._client.post(
            self._config.path,
            content=request.model_dump_json(),
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()
        logger.debug("task_created", status_code=response.status_code)
        if not response.content:
            return None
        return response.json()
