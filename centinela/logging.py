# =====================================
# file: centinela/logging.py
# =====================================
from __future__ import annotations

import os
import sys
from pathlib import Path

from loguru import logger

_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def _default_log_dir() -> Path:
    env = os.environ.get("CENTINELA_LOG_DIR")
    if env:
        return Path(env)
    if os.name == "nt":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData/Local"))
    else:
        base = Path(os.environ.get("XDG_STATE_HOME", Path.home() / ".local/state"))
    return base / "centinela" / "logs"


def setup_logging(
    level: str = "INFO",
    rotation: str | int | None = "00:00",
    retention: str | int | None = "7 days",
    serialize: bool = False,
    service: str | None = None,
) -> Path:
    """Consola + fichero rotado por servicio (uno por proceso/worker).

    Cada worker corre como proceso separado, por eso el nombre del fichero
    incluye el servicio: centinela.<service>.log
    """
    logger.remove()

    log_dir = _default_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)

    service = service or os.environ.get("CENTINELA_SERVICE") or "main"
    logfile = log_dir / f"centinela.{service}.log"

    logger.add(
        sys.stderr,
        level=level.upper(),
        enqueue=True,
        backtrace=False,
        diagnose=False,
        colorize=True,
        format=_CONSOLE_FORMAT,
    )
    logger.add(
        logfile,
        level=level.upper(),
        rotation=rotation,
        retention=retention,
        compression="zip",
        enqueue=True,
        delay=True,
        backtrace=False,
        diagnose=False,
        serialize=serialize,
    )

    logger.info(f"Log file -> {logfile} (override con CENTINELA_LOG_DIR / CENTINELA_SERVICE)")
    return logfile
