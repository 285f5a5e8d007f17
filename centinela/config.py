#=======================================
# file:  centinela/config.py
#=======================================
from __future__ import annotations

import os
import re
from typing import Any, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

_UNRESOLVED = re.compile(r"\$\{[A-Za-z_][A-Za-z0-9_]*\}")


def _drop_unresolved(node: Any) -> Any:
    """Elimina claves cuyo valor quedó como "${VAR}" sin expandir.

    Así los defaults del modelo aplican cuando falta la variable de entorno.
    """
    if isinstance(node, dict):
        out = {}
        for k, v in node.items():
            if isinstance(v, str) and _UNRESOLVED.search(v):
                continue
            out[k] = _drop_unresolved(v)
        return out
    if isinstance(node, list):
        return [_drop_unresolved(v) for v in node]
    return node


class StoreCfg(BaseModel):
    host: str = "localhost"
    port: int = 6379
    password: Optional[str] = None
    db: int = 0

    @property
    def url(self) -> str:
        return f"redis://{self.host}:{self.port}/{self.db}"


class FeedCfg(BaseModel):
    ws_url: str = ""
    api_key: Optional[str] = None
    reconnect_delay_s: float = 5.0
    # None = reintentar siempre
    max_reconnect_attempts: Optional[int] = None
    enqueue_timeout_s: float = 2.0
    ping_interval_s: Optional[float] = 20.0

    @field_validator("max_reconnect_attempts")
    @classmethod
    def _non_negative(cls, v):
        if v is not None and v < 0:
            raise ValueError("max_reconnect_attempts must be >= 0")
        return v


class RegistryCfg(BaseModel):
    refresh_interval_s: float = 30.0


class DispatcherCfg(BaseModel):
    poll_interval_s: float = 1.0
    error_backoff_s: float = 1.0


class TelegramCfg(BaseModel):
    token: Optional[str] = None
    disable_web_page_preview: bool = True


class LimitsCfg(BaseModel):
    max_price_alerts: int = 3
    max_transfer_alerts: int = 3


class LoggingCfg(BaseModel):
    level: str = "INFO"
    rotation: str = "00:00"
    retention: str = "7 days"
    serialize: bool = False


class ObservabilityCfg(BaseModel):
    logging: LoggingCfg = LoggingCfg()
    prometheus_exporter: bool = False
    metrics_port: int = 9000


class Config(BaseModel):
    model_config = ConfigDict(extra="allow")

    store: StoreCfg = StoreCfg()
    feed: FeedCfg = FeedCfg()
    registry: RegistryCfg = RegistryCfg()
    dispatcher: DispatcherCfg = DispatcherCfg()
    telegram: TelegramCfg = TelegramCfg()
    limits: LimitsCfg = LimitsCfg()
    observability: ObservabilityCfg = ObservabilityCfg()

    @model_validator(mode="before")
    @classmethod
    def _strip_placeholders(cls, data):
        return _drop_unresolved(data or {})


def load_config(path: str, env_path: Optional[str] = None) -> Config:
    if env_path:
        load_dotenv(env_path)
    with open(path, "r", encoding="utf-8") as f:
        raw = os.path.expandvars(f.read())
    data = yaml.safe_load(raw)
    return Config.model_validate(data)
