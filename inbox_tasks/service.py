"""MailService: runs the inbox and trash cycles on independent timers."""

from __future__ import annotations

import asyncio
import contextlib
import signal
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

import structlog
import uvicorn

from .config import ServiceConfig
from .drainer import InboxDrainer
from .health import create_health_app
from .imap_client import SessionFactory, imap_session
from .janitor import TrashJanitor
from .logging import setup_logging
from .models import CycleKind, CycleReport, ServiceStatus
from .sink import MessageSink, TaskStoreClient

logger = structlog.get_logger()


class MailService:
    """Schedules inbox drains and trash purges.

    Each cycle opens its own IMAP session.  A per-kind lock keeps two
    cycles of the same kind from running at once; a trigger that finds
    its lock held is skipped.  ``run()`` starts the following
    concurrently via :class:`asyncio.TaskGroup`:

    * the inbox drain timer
    * the trash purge timer
    * the FastAPI health server
    """

    def __init__(
        self,
        config: ServiceConfig,
        sink: MessageSink | None = None,
        *,
        session_factory: SessionFactory = imap_session,
    ) -> None:
        self.config = config
        self.status: ServiceStatus = ServiceStatus.STARTING
        self.start_time: float = time.monotonic()
        self.last_reports: dict[CycleKind, CycleReport] = {}

        self._sink = sink if sink is not None else TaskStoreClient(config.tasks)
        self._drainer = InboxDrainer(config.imap, self._sink, session_factory=session_factory)
        self._janitor = TrashJanitor(config.imap, session_factory=session_factory)
        self._operations: dict[CycleKind, Callable[[], Awaitable[int]]] = {
            CycleKind.INBOX: self._drainer.drain,
            CycleKind.TRASH: self._janitor.cleanup,
        }
        self._locks = {kind: asyncio.Lock() for kind in CycleKind}
        self._shutdown_event = asyncio.Event()

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    async def run_cycle(self, kind: CycleKind) -> CycleReport | None:
        """Run one cycle of *kind* and return its report.

        Returns ``None`` when a cycle of the same kind is still running.
        Errors are logged and recorded in the report, never raised.
        """
        lock = self._locks[kind]
        if lock.locked():
            logger.warning("cycle_skipped_already_running", kind=kind.value)
            return None

        async with lock:
            timeout = self.config.schedule.cycle_timeout_seconds
            report = CycleReport(kind=kind)
            try:
                async with asyncio.timeout(timeout):
                    report.processed = await self._operations[kind]()
            except TimeoutError:
                report.error = f"cycle exceeded {timeout}s"
                logger.error("cycle_timed_out", kind=kind.value, timeout_seconds=timeout)
            except Exception as exc:
                report.error = str(exc) or type(exc).__name__
                logger.exception("cycle_failed", kind=kind.value, error=report.error)

            report.finished_at = datetime.now(UTC)
            self.last_reports[kind] = report
            logger.info(
                "cycle_finished",
                kind=kind.value,
                processed=report.processed,
                ok=report.ok,
            )
            return report

    async def run_once(self, kind: CycleKind) -> CycleReport | None:
        """Run a single cycle with the sink started and stopped around it."""
        await self._sink.start()
        try:
            return await self.run_cycle(kind)
        finally:
            await self._sink.stop()

    async def _run_periodic(self, kind: CycleKind, interval: float) -> None:
        """Run *kind* now and then every *interval* seconds until shutdown."""
        while not self._shutdown_event.is_set():
            await self.run_cycle(kind)
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval)

    # ------------------------------------------------------------------
    # Health server
    # ------------------------------------------------------------------

    async def _run_health_server(self) -> None:
        """Start the FastAPI health server and shut it down on signal."""
        app = create_health_app(self)
        config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=self.config.health_port,
            log_level="warning",
        )
        server = uvicorn.Server(config)

        serve_task = asyncio.create_task(server.serve())
        await self._shutdown_event.wait()
        server.should_exit = True
        await serve_task

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def shutdown(self) -> None:
        self._shutdown_event.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()

        def _handle(sig: signal.Signals) -> None:
            logger.info("shutdown_signal_received", signal=sig.name)
            self.shutdown()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, _handle, sig)

    async def run(self) -> None:
        """Run both timers and the health server until SIGTERM / SIGINT.

        Call as ``asyncio.run(service.run())``.
        """
        setup_logging(json=self.config.log_json, level=self.config.log_level, service=self.config.name)
        self._install_signal_handlers()
        self.start_time = time.monotonic()

        logger.info("service_starting", imap_server=self.config.imap.server)

        await self._sink.start()
        self.status = ServiceStatus.RUNNING
        schedule = self.config.schedule

        try:
            async with asyncio.TaskGroup() as tg:
                tg.create_task(self._run_periodic(CycleKind.INBOX, schedule.inbox_interval_seconds))
                tg.create_task(self._run_periodic(CycleKind.TRASH, schedule.trash_interval_seconds))
                tg.create_task(self._run_health_server())
        except* Exception:
            logger.exception("service_task_group_error")
        finally:
            self.status = ServiceStatus.STOPPING
            await self._sink.stop()
            self.status = ServiceStatus.STOPPED
            logger.info("service_stopped")
