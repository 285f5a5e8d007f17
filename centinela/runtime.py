#=======================================
# file:  centinela/runtime.py
#=======================================
from __future__ import annotations

import asyncio
import contextlib
import signal
from typing import Optional


async def sleep_or_stop(stop: Optional[asyncio.Event], delay: float) -> bool:
    """Duerme `delay` segundos salvo que se active `stop`. Devuelve True si hay que parar."""
    if stop is None:
        await asyncio.sleep(delay)
        return False
    if stop.is_set():
        return True
    try:
        await asyncio.wait_for(stop.wait(), timeout=max(0.0, delay))
    except asyncio.TimeoutError:
        return False
    return True


def is_stopped(stop: Optional[asyncio.Event]) -> bool:
    return stop is not None and stop.is_set()


def install_stop_signals(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Windows no soporta add_signal_handler
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)
