"""Online/offline tracking and outbox replay triggers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from facturador.services.auth_session import AuthenticationSession, SessionState
from facturador.services.exceptions import ErrorKind
from facturador.services.interfaces import ConnectivityNotifier, Notifier
from facturador.services.outbox import OutboxQueue, ProcessFn
from facturador.services.results import DrainReport, Failure

logger = logging.getLogger(__name__)


class ConnectivityCoordinator:
    """Reacts to connectivity transitions.

    offline -> online refreshes the session and drains the outbox.
    online -> offline only flips the flag; calls already in flight finish
    and their results are applied as usual.
    """

    def __init__(
        self,
        session: AuthenticationSession,
        outbox: OutboxQueue,
        process_fn: ProcessFn,
        *,
        notifier: Notifier | None = None,
        online: bool = True,
        retry_interval: float | None = None,
    ) -> None:
        self.session = session
        self.outbox = outbox
        self._process_fn = process_fn
        self._notifier = notifier
        self.online = online
        self.retry_interval = retry_interval
        self._source: ConnectivityNotifier | None = None
        self._tasks: set[asyncio.Task] = set()
        self._timer: asyncio.TimerHandle | None = None
        self._closed = False

    @property
    def connected(self) -> bool:
        """Online with a session ARCA will accept."""
        return self.online and self.session.state is SessionState.AUTHENTICATED

    @property
    def retry_scheduled(self) -> bool:
        return self._timer is not None

    def _notify(self, kind: str, message: str) -> None:
        if self._notifier is not None:
            self._notifier.notify(kind, message)

    def attach(self, source: ConnectivityNotifier) -> None:
        self.detach()
        source.subscribe(self._on_signal)
        self._source = source

    def detach(self) -> None:
        if self._source is not None:
            self._source.unsubscribe(self._on_signal)
            self._source = None

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Background replay failed", exc_info=task.exception())

    def _on_signal(self, online: bool) -> None:
        """ConnectivityNotifier callback; runs on the event loop."""
        self._spawn(self.set_online(online))

    async def set_online(self, online: bool) -> DrainReport | None:
        was_online = self.online
        self.online = online
        if online and not was_online:
            logger.info("Connection restored")
            self._notify("info", "Conexion con ARCA restablecida")
            return await self.reconnect()
        if was_online and not online:
            logger.warning("Connection lost, submissions will be queued")
            self._cancel_retry()
            self._notify(
                "warning",
                "Sin conexion con ARCA. Los comprobantes se enviaran al reconectar.",
            )
        return None

    async def reconnect(self) -> DrainReport:
        """Refresh the session, then replay the outbox."""
        result = await self.session.refresh()
        if not result.success:
            logger.warning("Refresh on reconnect failed: %s", result.error)
        return await self.trigger_replay()

    async def trigger_replay(self) -> DrainReport:
        if not self.online:
            return DrainReport(
                remaining=len(self.outbox),
                stopped_on=Failure(ErrorKind.CONNECTIVITY, "Sin conexion"),
            )
        if not self.outbox:
            return DrainReport()

        report = await self.outbox.drain(self._process_fn)
        if report.skipped:
            return report
        if report.approved:
            self._notify("success", f"{len(report.approved)} comprobante(s) pendiente(s) enviado(s)")
        if report.rejected:
            self._notify("error", f"{len(report.rejected)} comprobante(s) rechazado(s) por ARCA")
        if report.stopped_on is not None:
            if report.stopped_on.transient:
                self.schedule_retry()
            else:
                self._notify("error", f"Envio de pendientes detenido: {report.stopped_on.message}")
        return report

    def schedule_retry(self) -> None:
        """Arm the replay timer once; a no-op without an interval or while one is armed."""
        if self.retry_interval is None or self._timer is not None:
            return
        if self._closed or not self.online:
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.retry_interval, self._on_retry_timer)
        logger.info("Outbox replay retry in %.0fs", self.retry_interval)

    def _cancel_retry(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_retry_timer(self) -> None:
        self._timer = None
        if self.online and self.outbox and not self._closed:
            self._spawn(self.trigger_replay())

    async def wait_idle(self) -> None:
        """Wait for replays started from signals or timers."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def close(self) -> None:
        self._closed = True
        self._cancel_retry()
        self.detach()
        await self.wait_idle()
