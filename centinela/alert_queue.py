#=======================================
# file:  centinela/alert_queue.py
#=======================================
"""
Cola persistida de alertas pendientes (una por pipeline).

LPUSH en la cola + RPOP en la cabeza = FIFO. El pop es destructivo y sin ack:
una entrada sacada se pierde si el procesado posterior falla. Eso es lo que
permite varios dispatchers contra la misma cola (nunca reciben la misma
entrada), sin orden entre ellos.
"""
from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from loguru import logger

from .errors import ParseError
from .events import FeedEvent
from .obs import metrics as obs_metrics
from .store import Store

E = TypeVar("E", bound=FeedEvent)


@dataclass(frozen=True)
class QueueEntry(Generic[E]):
    identifier: str
    event: E
    enqueued_at: Optional[float] = None


class AlertQueue(Generic[E]):
    def __init__(
        self,
        store: Store,
        queue_key: str,
        id_field: str,
        parse_event: Callable[[Dict[str, Any]], E],
        *,
        pipeline: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self.queue_key = queue_key
        self._id_field = id_field
        self._parse_event = parse_event
        self.pipeline = pipeline
        self._clock = clock

    def encode(self, identifier: str, event: E) -> str:
        return json.dumps(
            {self._id_field: identifier, "data": event.raw, "enqueuedAt": self._clock()}
        )

    def decode(self, raw: str) -> QueueEntry[E]:
        try:
            payload = json.loads(raw)
        except ValueError as e:
            raise ParseError(f"{self.queue_key}: invalid JSON entry: {e!s}") from e
        if not isinstance(payload, dict):
            raise ParseError(f"{self.queue_key}: entry is not an object")
        identifier = payload.get(self._id_field)
        if not isinstance(identifier, str) or not identifier:
            raise ParseError(f"{self.queue_key}: entry without {self._id_field!r}")
        event = self._parse_event(payload.get("data"))
        ts = payload.get("enqueuedAt")
        return QueueEntry(identifier, event, float(ts) if isinstance(ts, (int, float)) else None)

    async def enqueue(self, identifier: str, event: E) -> int:
        """Añade al final. Los errores del store se propagan al caller (StoreError)."""
        depth = await self._store.lpush(self.queue_key, self.encode(identifier, event))
        obs_metrics.queue_enqueued_total.labels(self.pipeline).inc()
        obs_metrics.queue_depth.labels(self.pipeline).set(depth)
        logger.debug(f"[queue:{self.pipeline}] +{identifier} depth={depth}")
        return depth

    async def dequeue(self) -> Optional[QueueEntry[E]]:
        """Saca la cabeza o devuelve None si está vacía; nunca bloquea.

        Una entrada corrupta ya está fuera de la cola cuando sale el ParseError.
        """
        raw = await self._store.rpop(self.queue_key)
        if raw is None:
            return None
        obs_metrics.queue_dequeued_total.labels(self.pipeline).inc()
        entry = self.decode(raw)
        if entry.enqueued_at is not None:
            obs_metrics.queue_time_seconds.labels(self.pipeline).observe(max(0.0, self._clock() - entry.enqueued_at))
        return entry

    async def depth(self) -> int:
        n = await self._store.llen(self.queue_key)
        obs_metrics.queue_depth.labels(self.pipeline).set(n)
        return n
