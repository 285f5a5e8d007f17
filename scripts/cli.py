# ===========================================
# file: scripts/cli.py
# ===========================================
from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional

import click
from loguru import logger

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from centinela.alerts.notifier import TelegramNotifier  # noqa: E402
from centinela.config import Config, load_config  # noqa: E402
from centinela.errors import StoreError, WatcherLimitError  # noqa: E402
from centinela.logging import setup_logging  # noqa: E402
from centinela.obs.metrics import run_exporter  # noqa: E402
from centinela.pipelines import (  # noqa: E402
    PIPELINES,
    build_book,
    build_dispatcher,
    build_ingestor,
    build_queue,
    get_spec,
    run_ingest,
)
from centinela.runtime import install_stop_signals  # noqa: E402
from centinela.store import Store  # noqa: E402
from centinela.watchers import PriceFilter, TransferFilter, to_document  # noqa: E402

DEFAULT_CONFIG = ROOT / "config" / "config.yaml"
PIPELINE_CHOICE = click.Choice(sorted(PIPELINES))


# ------- helpers -------
def _load(config_path: Optional[str], service: Optional[str] = None) -> Config:
    cfg = load_config(config_path or str(DEFAULT_CONFIG), env_path=str(ROOT / ".env"))
    logcfg = cfg.observability.logging
    setup_logging(logcfg.level, logcfg.rotation, logcfg.retention, logcfg.serialize, service=service)
    return cfg


def _with_store(cfg: Config, body: Callable[[Store], Awaitable[None]]) -> None:
    """Conecta el store, ejecuta `body` y cierra. Store inalcanzable al arrancar = salida con error."""

    async def _run() -> None:
        store = Store(cfg.store.url, cfg.store.password)
        try:
            await store.connect()
        except StoreError as e:
            logger.error(f"[store] {e!s}")
            raise SystemExit(2)
        try:
            await body(store)
        finally:
            await store.close()

    asyncio.run(_run())


config_option = click.option(
    "--config", "config_path", type=click.Path(exists=True, dir_okay=False), default=None,
    help="Ruta al config.yaml (default: config/config.yaml).",
)


# ===========================================
# CLI ROOT
# ===========================================
@click.group()
def cli() -> None:
    """Centinela CLI: alertas oracle price / whale transfer."""


# ===========================================
# ENV GROUP
# ===========================================
@cli.group("env")
def env_group() -> None:
    """Diagnóstico de entorno."""


@env_group.command("doctor")
@config_option
def env_doctor(config_path: Optional[str]) -> None:
    """PING al store, tamaño de documentos y profundidad de colas."""
    cfg = _load(config_path, service="doctor")

    async def _body(store: Store) -> None:
        logger.info(f"store PING ok={await store.ping()} url={cfg.store.url}")
        for spec in PIPELINES.values():
            doc = await build_book(spec, store, cfg).load_document()
            depth = await build_queue(spec, store).depth()
            logger.info(
                f"[{spec.name}] document={spec.document_key} identifiers={len(doc or {})} "
                f"queue={spec.queue_key} depth={depth}"
            )
        logger.info(f"feed ws_url={cfg.feed.ws_url or '(unset)'} api_key={'set' if cfg.feed.api_key else 'unset'}")
        logger.info(f"telegram token={'set' if cfg.telegram.token else 'unset'}")

    _with_store(cfg, _body)


# ===========================================
# WORKERS
# ===========================================
def _maybe_exporter(cfg: Config) -> None:
    if cfg.observability.prometheus_exporter:
        run_exporter(cfg.observability.metrics_port)


@cli.group("ingest")
def ingest_group() -> None:
    """Feed WS -> registry -> cola."""


@ingest_group.command("run")
@click.option("--pipeline", type=PIPELINE_CHOICE, required=True)
@config_option
def ingest_run(pipeline: str, config_path: Optional[str]) -> None:
    cfg = _load(config_path, service=f"{pipeline}-ingest")
    if not cfg.feed.ws_url:
        raise click.UsageError("feed.ws_url vacío (define WS_URL)")
    _maybe_exporter(cfg)
    spec = get_spec(pipeline)

    async def _body(store: Store) -> None:
        stop = asyncio.Event()
        install_stop_signals(stop)
        await run_ingest(build_ingestor(spec, store, cfg, stop=stop))

    _with_store(cfg, _body)


@cli.group("dispatch")
def dispatch_group() -> None:
    """Cola -> filtros -> Telegram."""


@dispatch_group.command("run")
@click.option("--pipeline", type=PIPELINE_CHOICE, required=True)
@config_option
def dispatch_run(pipeline: str, config_path: Optional[str]) -> None:
    cfg = _load(config_path, service=f"{pipeline}-dispatch")
    _maybe_exporter(cfg)
    spec = get_spec(pipeline)

    async def _body(store: Store) -> None:
        stop = asyncio.Event()
        install_stop_signals(stop)
        notifier = TelegramNotifier(cfg.telegram.token, disable_web_page_preview=cfg.telegram.disable_web_page_preview)
        try:
            await build_dispatcher(spec, store, cfg, notifier, stop=stop).run()
        finally:
            await notifier.close()

    _with_store(cfg, _body)


# ===========================================
# WATCH GROUP (administración de watchers)
# ===========================================
@cli.group("watch")
def watch_group() -> None:
    """Alta/baja/listado de watchers en el documento persistido."""


@watch_group.command("add-price")
@click.argument("user_id", type=int)
@click.argument("feed_id")
@click.argument("price", type=float)
@click.option("--name", default="", help="Nombre a mostrar del token.")
@config_option
def watch_add_price(user_id: int, feed_id: str, price: float, name: str, config_path: Optional[str]) -> None:
    cfg = _load(config_path, service="cli")
    book_filter = PriceFilter(price=price, name=name, active=True)

    async def _body(store: Store) -> None:
        try:
            await build_book(get_spec("oracle"), store, cfg).save_watcher(user_id, feed_id, book_filter)
        except WatcherLimitError as e:
            raise click.ClickException(str(e))
        click.echo(f"oracle watcher saved: user={user_id} feed={feed_id} price={price}")

    _with_store(cfg, _body)


@watch_group.command("add-transfer")
@click.argument("user_id", type=int)
@click.argument("address")
@click.option("--send/--no-send", default=True, show_default=True)
@click.option("--receive/--no-receive", default=True, show_default=True)
@click.option("--mint", default=None, help="Restringe a un mint concreto.")
@click.option("--amount", type=float, default=None, help="Umbral en unidades de token.")
@click.option("--greater/--le", default=False, show_default=True, help="> umbral o <= umbral.")
@config_option
def watch_add_transfer(
    user_id: int,
    address: str,
    send: bool,
    receive: bool,
    mint: Optional[str],
    amount: Optional[float],
    greater: bool,
    config_path: Optional[str],
) -> None:
    cfg = _load(config_path, service="cli")
    book_filter = TransferFilter(send=send, receive=receive, mintAddress=mint, amount=amount, greater=greater, active=True)

    async def _body(store: Store) -> None:
        try:
            await build_book(get_spec("transfer"), store, cfg).save_watcher(user_id, address, book_filter)
        except WatcherLimitError as e:
            raise click.ClickException(str(e))
        click.echo(f"transfer watcher saved: user={user_id} address={address}")

    _with_store(cfg, _body)


@watch_group.command("rm")
@click.argument("pipeline", type=PIPELINE_CHOICE)
@click.argument("user_id", type=int)
@click.argument("identifier")
@config_option
def watch_rm(pipeline: str, user_id: int, identifier: str, config_path: Optional[str]) -> None:
    cfg = _load(config_path, service="cli")

    async def _body(store: Store) -> None:
        removed = await build_book(get_spec(pipeline), store, cfg).remove_watcher(user_id, identifier)
        click.echo("removed" if removed else "not found")

    _with_store(cfg, _body)


@watch_group.command("toggle")
@click.argument("pipeline", type=PIPELINE_CHOICE)
@click.argument("user_id", type=int)
@click.argument("identifier")
@click.option("--active/--inactive", required=True)
@config_option
def watch_toggle(pipeline: str, user_id: int, identifier: str, active: bool, config_path: Optional[str]) -> None:
    cfg = _load(config_path, service="cli")

    async def _body(store: Store) -> None:
        ok = await build_book(get_spec(pipeline), store, cfg).set_active(user_id, identifier, active)
        click.echo(f"active={active}" if ok else "not found")

    _with_store(cfg, _body)


@watch_group.command("ls")
@click.argument("pipeline", type=PIPELINE_CHOICE)
@click.option("--user", "user_id", type=int, default=None, help="Solo los watchers de este usuario.")
@config_option
def watch_ls(pipeline: str, user_id: Optional[int], config_path: Optional[str]) -> None:
    cfg = _load(config_path, service="cli")

    async def _body(store: Store) -> None:
        book = build_book(get_spec(pipeline), store, cfg)
        if user_id is not None:
            mine = await book.watchers_for_user(user_id)
            out = {k: to_document(w) for k, w in mine.items()}
        else:
            out = await book.load_document() or {}
        click.echo(json.dumps(out, indent=2))

    _with_store(cfg, _body)


# ===========================================
# QUEUE GROUP
# ===========================================
@cli.group("queue")
def queue_group() -> None:
    """Inspección de colas de alertas."""


@queue_group.command("depth")
@config_option
def queue_depth(config_path: Optional[str]) -> None:
    cfg = _load(config_path, service="cli")

    async def _body(store: Store) -> None:
        for spec in PIPELINES.values():
            click.echo(f"{spec.queue_key}: {await build_queue(spec, store).depth()}")

    _with_store(cfg, _body)


# ===========================================
# MAIN
# ===========================================
if __name__ == "__main__":
    cli()
