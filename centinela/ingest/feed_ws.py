# =========================================================
# file: centinela/ingest/feed_ws.py
# =========================================================
from __future__ import annotations

import asyncio
import enum
import json
from typing import Any, Callable, Dict, Optional

import websockets
from loguru import logger

from centinela.alert_queue import AlertQueue
from centinela.errors import ParseError
from centinela.events import FeedEvent, PriceUpdate, TransferEvent, parse_price_update, parse_transfer
from centinela.obs import metrics as obs_metrics
from centinela.registry import WatchRegistry
from centinela.runtime import is_stopped, sleep_or_stop


class FeedState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONFIGURING = "configuring"
    STREAMING = "streaming"
    CLOSED = "closed"
    ERRORED = "errored"


def configure_message(category: str) -> str:
    # lista vacía = sin filtro en servidor, todo se filtra aquí contra el registry
    return json.dumps({"type": "configure", "filters": {category: []}})


class FeedIngestor:
    """Conexión WS persistente al feed; encola los eventos cuyo identificador está vigilado.

    Máquina de estados:
      DISCONNECTED -> CONNECTING -> CONFIGURING -> STREAMING -> (CLOSED|ERRORED) -> DISCONNECTED

    Tras CLOSED/ERRORED se reconecta siempre pasado `reconnect_delay_s`.
    `max_reconnect_attempts` (None = sin límite) cuenta intentos seguidos sin
    llegar a STREAMING.
    """

    category: str = ""
    pipeline: str = ""

    def __init__(
        self,
        registry: WatchRegistry,
        queue: AlertQueue,
        *,
        ws_url: str,
        api_key: Optional[str] = None,
        reconnect_delay_s: float = 5.0,
        max_reconnect_attempts: Optional[int] = None,
        enqueue_timeout_s: float = 2.0,
        ping_interval_s: Optional[float] = 20.0,
        connect: Optional[Callable[..., Any]] = None,
        stop: Optional[asyncio.Event] = None,
    ) -> None:
        self.registry = registry
        self.queue = queue
        self.ws_url = ws_url
        self.api_key = api_key
        self.reconnect_delay_s = reconnect_delay_s
        self.max_reconnect_attempts = max_reconnect_attempts
        self.enqueue_timeout_s = enqueue_timeout_s
        self.ping_interval_s = ping_interval_s
        self._connect = connect or websockets.connect
        self._stop = stop
        self.state = FeedState.DISCONNECTED
        self.reconnects = 0
        self._tag = f"[{self.pipeline}-ws]"

    # --- subclases ---
    def parse(self, raw: str | bytes) -> FeedEvent:
        raise NotImplementedError

    def match(self, event: FeedEvent) -> Optional[str]:
        """Identificador vigilado bajo el que se encola el evento, o None."""
        raise NotImplementedError

    # --- estado ---
    def _set_state(self, state: FeedState) -> None:
        if state is self.state:
            return
        obs_metrics.feed_state.labels(self.pipeline, self.state.value).set(0)
        obs_metrics.feed_state.labels(self.pipeline, state.value).set(1)
        logger.debug(f"{self._tag} {self.state.value} -> {state.value}")
        self.state = state

    def _headers(self) -> Dict[str, str]:
        return {"X-API-Key": self.api_key} if self.api_key else {}

    async def run(self) -> None:
        failures = 0
        while not is_stopped(self._stop):
            reason = "closed"
            try:
                streamed = await self._run_once()
            except asyncio.CancelledError:
                self._set_state(FeedState.DISCONNECTED)
                raise
            except Exception as e:
                streamed = self.state is FeedState.STREAMING
                self._set_state(FeedState.ERRORED)
                reason = type(e).__name__
                logger.warning(f"{self._tag} connection error {reason}: {e!s}")
            else:
                self._set_state(FeedState.CLOSED)
                logger.warning(f"{self._tag} connection closed")
            self._set_state(FeedState.DISCONNECTED)

            if is_stopped(self._stop):
                break
            failures = 0 if streamed else failures + 1
            if self.max_reconnect_attempts is not None and failures > self.max_reconnect_attempts:
                logger.error(f"{self._tag} giving up after {failures} failed attempts")
                break

            self.reconnects += 1
            obs_metrics.feed_reconnects_total.labels(self.pipeline, reason).inc()
            logger.info(f"{self._tag} reconnect in {self.reconnect_delay_s:.1f}s")
            if await sleep_or_stop(self._stop, self.reconnect_delay_s):
                break
        logger.info(f"{self._tag} ingestor detenido")

    async def _run_once(self) -> bool:
        """Una conexión completa. Devuelve True si llegó a STREAMING."""
        self._set_state(FeedState.CONNECTING)
        async with self._connect(
            self.ws_url,
            additional_headers=self._headers(),
            ping_interval=self.ping_interval_s,
            max_queue=None,
        ) as ws:
            self._set_state(FeedState.CONFIGURING)
            await ws.send(configure_message(self.category))
            self._set_state(FeedState.STREAMING)
            logger.info(f"{self._tag} streaming {self.category} (registry size={len(self.registry)})")

            reader = asyncio.ensure_future(self._reader(ws))
            if self._stop is None:
                await reader
                return True
            stopper = asyncio.ensure_future(self._stop.wait())
            try:
                done, _ = await asyncio.wait({reader, stopper}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for t in (reader, stopper):
                    if not t.done():
                        t.cancel()
            if reader in done:
                # propaga el error del socket hacia run()
                reader.result()
            return True

    async def _reader(self, ws: Any) -> None:
        async for raw in ws:
            await self.handle_message(raw)

    async def handle_message(self, raw: str | bytes) -> Optional[str]:
        """Procesa un mensaje. Nunca lanza: el loop de lectura tiene que seguir vivo."""
        obs_metrics.feed_msgs_total.labels(self.pipeline).inc()
        try:
            event = self.parse(raw)
        except ParseError as e:
            obs_metrics.feed_malformed_total.labels(self.pipeline).inc()
            logger.warning(f"{self._tag} malformed message dropped: {e!s}")
            return None

        identifier = self.match(event)
        if identifier is None:
            return None
        obs_metrics.feed_matches_total.labels(self.pipeline).inc()

        try:
            await asyncio.wait_for(self.queue.enqueue(identifier, event), timeout=self.enqueue_timeout_s)
        except asyncio.TimeoutError:
            obs_metrics.queue_enqueue_fail_total.labels(self.pipeline, "timeout").inc()
            logger.error(f"{self._tag} enqueue timeout ({self.enqueue_timeout_s}s) id={identifier}; event lost")
            return None
        except Exception as e:
            obs_metrics.queue_enqueue_fail_total.labels(self.pipeline, type(e).__name__).inc()
            logger.error(f"{self._tag} enqueue failed id={identifier} {type(e).__name__}: {e!s}; event lost")
            return None
        logger.info(f"{self._tag} matched {identifier}")
        return identifier


class OracleIngestor(FeedIngestor):
    category = "oraclePrices"
    pipeline = "oracle"

    def parse(self, raw: str | bytes) -> PriceUpdate:
        return parse_price_update(raw)

    def match(self, event: FeedEvent) -> Optional[str]:
        if not isinstance(event, PriceUpdate):
            return None
        return event.feed_id if event.feed_id in self.registry else None


class TransferIngestor(FeedIngestor):
    category = "transfers"
    pipeline = "transfer"

    def parse(self, raw: str | bytes) -> TransferEvent:
        return parse_transfer(raw)

    def match(self, event: FeedEvent) -> Optional[str]:
        # sender antes que receiver; se encola una sola vez
        if not isinstance(event, TransferEvent):
            return None
        if event.sender in self.registry:
            return event.sender
        if event.receiver in self.registry:
            return event.receiver
        return None
