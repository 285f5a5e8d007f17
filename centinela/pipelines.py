#=======================================
# file:  centinela/pipelines.py
#=======================================
"""
Cableado de los dos pipelines (oracle price / whale transfer).

Claves del store compartidas con el bot: el documento de watchers y la cola
de alertas de cada pipeline.
"""
from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Type

from pydantic import BaseModel

from .alert_queue import AlertQueue
from .alerts.dispatcher import AlertDispatcher, OracleDispatcher, TransferDispatcher
from .alerts.notifier import Notifier
from .config import Config
from .events import parse_price_update, parse_transfer
from .ingest.feed_ws import FeedIngestor, OracleIngestor, TransferIngestor
from .registry import WatcherBook, WatchRegistry
from .store import Store
from .watchers import PriceFilter, PriceWatcher, TransferFilter, TransferWatcher


@dataclass(frozen=True)
class PipelineSpec:
    name: str
    document_key: str
    queue_key: str
    id_field: str
    watcher_model: Type[BaseModel]
    filter_model: Type[BaseModel]
    parse_event: Callable[[Any], Any]
    ingestor_cls: Type[FeedIngestor]
    dispatcher_cls: Type[AlertDispatcher]
    limit_attr: str


ORACLE = PipelineSpec(
    name="oracle",
    document_key="oracles",
    queue_key="oracle:alert:queue",
    id_field="priceFeedId",
    watcher_model=PriceWatcher,
    filter_model=PriceFilter,
    parse_event=parse_price_update,
    ingestor_cls=OracleIngestor,
    dispatcher_cls=OracleDispatcher,
    limit_attr="max_price_alerts",
)

TRANSFER = PipelineSpec(
    name="transfer",
    document_key="transfers",
    queue_key="transfer:alert:queue",
    id_field="whaleAddress",
    watcher_model=TransferWatcher,
    filter_model=TransferFilter,
    parse_event=parse_transfer,
    ingestor_cls=TransferIngestor,
    dispatcher_cls=TransferDispatcher,
    limit_attr="max_transfer_alerts",
)

PIPELINES: Dict[str, PipelineSpec] = {p.name: p for p in (ORACLE, TRANSFER)}


def get_spec(name: str) -> PipelineSpec:
    try:
        return PIPELINES[name]
    except KeyError:
        raise ValueError(f"unknown pipeline {name!r} (expected one of {sorted(PIPELINES)})") from None


def build_book(spec: PipelineSpec, store: Store, cfg: Config) -> WatcherBook:
    return WatcherBook(
        store,
        spec.document_key,
        spec.watcher_model,
        max_per_user=int(getattr(cfg.limits, spec.limit_attr)),
        pipeline=spec.name,
    )


def build_queue(spec: PipelineSpec, store: Store) -> AlertQueue:
    return AlertQueue(store, spec.queue_key, spec.id_field, spec.parse_event, pipeline=spec.name)


def build_ingestor(
    spec: PipelineSpec,
    store: Store,
    cfg: Config,
    *,
    stop: Optional[asyncio.Event] = None,
    connect: Optional[Callable[..., Any]] = None,
) -> FeedIngestor:
    registry = WatchRegistry(
        build_book(spec, store, cfg),
        refresh_interval_s=cfg.registry.refresh_interval_s,
        stop=stop,
    )
    return spec.ingestor_cls(
        registry,
        build_queue(spec, store),
        ws_url=cfg.feed.ws_url,
        api_key=cfg.feed.api_key,
        reconnect_delay_s=cfg.feed.reconnect_delay_s,
        max_reconnect_attempts=cfg.feed.max_reconnect_attempts,
        enqueue_timeout_s=cfg.feed.enqueue_timeout_s,
        ping_interval_s=cfg.feed.ping_interval_s,
        connect=connect,
        stop=stop,
    )


def build_dispatcher(
    spec: PipelineSpec,
    store: Store,
    cfg: Config,
    notifier: Notifier,
    *,
    stop: Optional[asyncio.Event] = None,
) -> AlertDispatcher:
    return spec.dispatcher_cls(
        build_queue(spec, store),
        build_book(spec, store, cfg),
        notifier,
        poll_interval_s=cfg.dispatcher.poll_interval_s,
        error_backoff_s=cfg.dispatcher.error_backoff_s,
        stop=stop,
    )


async def run_ingest(ingestor: FeedIngestor) -> None:
    """Refresh inicial del registry, luego refresher periódico + conexión WS."""
    await ingestor.registry.refresh()
    refresher = asyncio.create_task(ingestor.registry.run(), name=f"{ingestor.pipeline}-registry")
    try:
        await ingestor.run()
    finally:
        refresher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await refresher
