"""
Feed WS de prueba para correr los pipelines en local.

- Acepta conexiones en host/puerto configurables (por defecto 127.0.0.1:8765).
- Espera el mensaje {"type": "configure", ...} y a partir de ahí reenvía, una
  por mensaje, las líneas JSON del fichero de eventos (--events), con
  --interval segundos entre ellas. Con --loop vuelve a empezar al acabar.

Uso:
    python scripts/mock_feed_server.py --events dev/sample_events.jsonl --interval 0.5
    WS_URL=ws://127.0.0.1:8765 python scripts/cli.py ingest run --pipeline oracle
"""
from __future__ import annotations

import argparse
import asyncio
import json
from functools import partial
from pathlib import Path
from typing import List

import websockets
from loguru import logger


def _load_events(path: Path) -> List[str]:
    lines = [ln.strip() for ln in path.read_text(encoding="utf-8").splitlines()]
    return [ln for ln in lines if ln and not ln.startswith("#")]


async def _handler(websocket, *, events: List[str], interval: float, loop_forever: bool) -> None:
    client = f"{websocket.remote_address}"
    logger.info(f"[mock-feed] conexión abierta: {client}")
    try:
        first = json.loads(await websocket.recv())
        if first.get("type") != "configure":
            logger.warning(f"[mock-feed] primer mensaje no es configure: {first}")
            return
        logger.info(f"[mock-feed] configure filters={first.get('filters')}")
        while True:
            for line in events:
                await websocket.send(line)
                await asyncio.sleep(interval)
            if not loop_forever:
                break
    except websockets.exceptions.ConnectionClosed as exc:
        logger.warning(f"[mock-feed] conexión cerrada: {exc!s}")
    finally:
        logger.info(f"[mock-feed] fin de sesión: {client}")


async def main(host: str, port: int, events_path: Path, interval: float, loop_forever: bool) -> None:
    events = _load_events(events_path)
    logger.info(f"[mock-feed] escuchando en ws://{host}:{port} ({len(events)} eventos)")
    handler = partial(_handler, events=events, interval=interval, loop_forever=loop_forever)
    async with websockets.serve(handler, host, port):
        await asyncio.Future()  # run forever


if __name__ == "__main__":  # pragma: no cover - CLI utility
    parser = argparse.ArgumentParser(description="Feed WS mínimo que reproduce eventos JSONL")
    parser.add_argument("--host", default="127.0.0.1", help="Host de escucha")
    parser.add_argument("--port", type=int, default=8765, help="Puerto de escucha")
    parser.add_argument("--events", type=Path, required=True, help="Fichero JSONL con eventos")
    parser.add_argument("--interval", type=float, default=0.5, help="Segundos entre eventos")
    parser.add_argument("--loop", action="store_true", help="Repetir los eventos indefinidamente")
    args = parser.parse_args()

    try:
        asyncio.run(main(args.host, args.port, args.events, args.interval, args.loop))
    except KeyboardInterrupt:
        logger.info("[mock-feed] detenido por usuario")
