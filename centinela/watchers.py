#=======================================
# file:  centinela/watchers.py
#=======================================
"""
Watchers persistidos y predicados de matching.

Shape en el store (compatibilidad con el bot):
  {"userId": 42, "filters": {"price": 10, "name": "SOL", "active": true}}
  {"userId": 7,  "filters": {"send": true, "receive": false, "mintAddress": "...",
                             "amount": 100, "greater": true, "active": true}}
"""
from __future__ import annotations

from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt, field_validator

from .events import TransferEvent

Direction = Literal["send", "receive"]

# Ancho fijo de la ventana de precio: [target, target + 1)
PRICE_WINDOW = 1.0


class PriceFilter(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    price: float
    name: str = ""
    # flags ausentes en el documento = desactivado
    active: bool = False


class TransferFilter(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    send: bool = False
    receive: bool = False
    mint_address: Optional[str] = Field(default=None, alias="mintAddress")
    amount: Optional[Union[StrictInt, StrictFloat]] = None
    # sin "greater" el bot lo trata como "<="
    greater: bool = False
    # al contrario que en precio: sólo "active": false explícito desactiva
    active: bool = True

    @field_validator("amount", mode="before")
    @classmethod
    def _numeric_amount(cls, v):
        # umbral sólo si es numérico; cualquier otra cosa = sin umbral
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return None
        return v


class PriceWatcher(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    user_id: int = Field(alias="userId")
    filters: PriceFilter


class TransferWatcher(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    user_id: int = Field(alias="userId")
    filters: TransferFilter


Watcher = Union[PriceWatcher, TransferWatcher]


def to_document(watcher: Watcher) -> dict:
    return watcher.model_dump(by_alias=True, exclude_none=True)


def price_matches(f: PriceFilter, current_price: float) -> bool:
    """Activo y precio dentro de [target, target + 1).

    Límite inferior inclusivo, superior exclusivo. No es una tolerancia
    simétrica alrededor del target.
    """
    if not f.active:
        return False
    return f.price <= current_price < f.price + PRICE_WINDOW


def transfer_direction(event: TransferEvent, identifier: str) -> Direction:
    """La dirección se fija por entrada de cola: sender == dirección vigilada -> send."""
    return "send" if event.sender == identifier else "receive"


def transfer_matches(f: TransferFilter, event: TransferEvent, direction: Direction) -> bool:
    if not f.active:
        return False
    if direction == "send" and not f.send:
        return False
    if direction == "receive" and not f.receive:
        return False
    if f.mint_address and f.mint_address != event.mint:
        return False
    if f.amount is not None:
        qty = event.token_amount
        if f.greater:
            return qty > f.amount
        return qty <= f.amount
    return True
