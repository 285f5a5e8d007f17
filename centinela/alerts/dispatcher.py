# ===============================================
# centinela/alerts/dispatcher.py
# ===============================================
from __future__ import annotations

import asyncio
from typing import Any, List, Optional, Sequence, Tuple

from loguru import logger

from centinela.alert_queue import AlertQueue, QueueEntry
from centinela.alerts.messages import render_price_alert, render_transfer_alert
from centinela.alerts.notifier import Button, Notifier
from centinela.errors import ParseError
from centinela.events import PriceUpdate, TransferEvent
from centinela.obs import metrics as obs_metrics
from centinela.registry import WatcherBook
from centinela.runtime import is_stopped, sleep_or_stop
from centinela.watchers import (
    PriceWatcher,
    TransferWatcher,
    price_matches,
    transfer_direction,
    transfer_matches,
)


class AlertDispatcher:
    """Drena la cola y notifica a cada watcher cuyo filtro casa con el evento.

    Por entrada:
      1. pop (si vacía, duerme `poll_interval_s`)
      2. relee la lista de watchers del store (nunca del set cacheado del ingestor)
      3. evalúa cada filtro; un envío por match
    Un fallo de envío no corta el resto de watchers de la misma entrada.
    """

    pipeline: str = ""

    def __init__(
        self,
        queue: AlertQueue,
        book: WatcherBook,
        notifier: Notifier,
        *,
        poll_interval_s: float = 1.0,
        error_backoff_s: float = 1.0,
        stop: Optional[asyncio.Event] = None,
    ) -> None:
        self.queue = queue
        self.book = book
        self.notifier = notifier
        self.poll_interval_s = poll_interval_s
        self.error_backoff_s = error_backoff_s
        self._stop = stop
        self._tag = f"[{self.pipeline}-dispatch]"

    # --- subclases ---
    def matches(self, watcher: Any, entry: QueueEntry) -> bool:
        raise NotImplementedError

    def render(self, watcher: Any, entry: QueueEntry) -> Tuple[str, Optional[Sequence[Button]]]:
        raise NotImplementedError

    # --- loop ---
    async def run(self) -> None:
        logger.info(f"{self._tag} dispatcher iniciado (cola={self.queue.queue_key})")
        while not is_stopped(self._stop):
            try:
                handled = await self.step()
            except Exception as e:
                logger.error(f"{self._tag} loop error {type(e).__name__}: {e!s}; retry en {self.error_backoff_s}s")
                if await sleep_or_stop(self._stop, self.error_backoff_s):
                    break
                continue
            if not handled and await sleep_or_stop(self._stop, self.poll_interval_s):
                break
        logger.info(f"{self._tag} dispatcher detenido")

    async def step(self) -> bool:
        """Procesa como mucho una entrada. False si la cola estaba vacía."""
        try:
            entry = await self.queue.dequeue()
        except ParseError as e:
            obs_metrics.alerts_discarded_total.labels(self.pipeline, "malformed").inc()
            logger.warning(f"{self._tag} malformed queue entry dropped: {e!s}")
            return True
        if entry is None:
            return False
        await self.process(entry)
        return True

    async def process(self, entry: QueueEntry) -> int:
        """Evalúa la entrada contra los watchers actuales. Devuelve nº de envíos OK."""
        watchers = await self.book.get_watchers(entry.identifier)
        if not watchers:
            obs_metrics.alerts_discarded_total.labels(self.pipeline, "no_watchers").inc()
            logger.debug(f"{self._tag} {entry.identifier}: no watchers, entry discarded")
            return 0

        sent = 0
        for watcher in watchers:
            try:
                if not self.matches(watcher, entry):
                    continue
                obs_metrics.alerts_matched_total.labels(self.pipeline).inc()
                text, buttons = self.render(watcher, entry)
                await self.notifier.send(watcher.user_id, text, buttons=buttons)
                sent += 1
            except Exception as e:
                logger.error(
                    f"{self._tag} notify user={watcher.user_id} id={entry.identifier} failed "
                    f"{type(e).__name__}: {e!s}"
                )
        return sent


class OracleDispatcher(AlertDispatcher):
    pipeline = "oracle"

    def matches(self, watcher: PriceWatcher, entry: QueueEntry[PriceUpdate]) -> bool:
        return price_matches(watcher.filters, entry.event.price)

    def render(self, watcher: PriceWatcher, entry: QueueEntry[PriceUpdate]) -> Tuple[str, List[Button]]:
        return render_price_alert(entry.identifier, entry.event, watcher.filters.name)


class TransferDispatcher(AlertDispatcher):
    pipeline = "transfer"

    def matches(self, watcher: TransferWatcher, entry: QueueEntry[TransferEvent]) -> bool:
        # dirección fija por entrada, no por watcher
        direction = transfer_direction(entry.event, entry.identifier)
        return transfer_matches(watcher.filters, entry.event, direction)

    def render(self, watcher: TransferWatcher, entry: QueueEntry[TransferEvent]) -> Tuple[str, None]:
        direction = transfer_direction(entry.event, entry.identifier)
        return render_transfer_alert(entry.event, direction), None
