#=======================================
# file:  centinela/events.py
#=======================================
"""
Eventos del feed: unión etiquetada de los dos shapes concretos.

Se parsean una sola vez en el borde del ingestor; `raw` conserva el payload
original tal cual llegó para reenviarlo a la cola sin tocar sus campos.
"""
from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional, Union

from .errors import ParseError


@dataclass(frozen=True)
class PriceUpdate:
    feed_id: str
    price: float
    raw: Dict[str, Any] = field(repr=False, compare=False)
    kind: Literal["price"] = "price"


@dataclass(frozen=True)
class TransferEvent:
    sender: str
    receiver: str
    mint: str
    amount: float
    decimal: int
    signature: Optional[str]
    raw: Dict[str, Any] = field(repr=False, compare=False)
    kind: Literal["transfer"] = "transfer"

    @property
    def token_amount(self) -> float:
        """Cantidad en unidades de token (amount viene en unidades mínimas)."""
        return self.amount / (10 ** self.decimal)


FeedEvent = Union[PriceUpdate, TransferEvent]


def _as_object(raw: str | bytes | Dict[str, Any]) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    try:
        msg = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ParseError(f"invalid JSON: {e!s}") from e
    if not isinstance(msg, dict):
        raise ParseError(f"expected JSON object, got {type(msg).__name__}")
    return msg


def _number(msg: Dict[str, Any], key: str) -> float:
    v = msg.get(key)
    if isinstance(v, bool) or v is None:
        raise ParseError(f"missing numeric field {key!r}")
    try:
        out = float(v)
    except (TypeError, ValueError) as e:
        raise ParseError(f"field {key!r} is not numeric: {v!r}") from e
    if not math.isfinite(out):
        raise ParseError(f"field {key!r} is not finite: {v!r}")
    return out


def _text(msg: Dict[str, Any], key: str) -> str:
    v = msg.get(key)
    if not isinstance(v, str) or not v:
        raise ParseError(f"missing string field {key!r}")
    return v


def parse_price_update(raw: str | bytes | Dict[str, Any]) -> PriceUpdate:
    msg = _as_object(raw)
    return PriceUpdate(
        feed_id=_text(msg, "priceFeedAccount"),
        price=_number(msg, "price"),
        raw=msg,
    )


def parse_transfer(raw: str | bytes | Dict[str, Any]) -> TransferEvent:
    msg = _as_object(raw)
    decimal = msg.get("decimal", 0)
    if decimal is None:
        decimal = 0
    if isinstance(decimal, bool) or not isinstance(decimal, (int, float)) or decimal < 0 or int(decimal) != decimal:
        raise ParseError(f"field 'decimal' is not a non-negative integer: {decimal!r}")
    signature = msg.get("signature")
    return TransferEvent(
        sender=_text(msg, "senderAddress"),
        receiver=_text(msg, "receiverAddress"),
        mint=_text(msg, "mintAddress"),
        amount=_number(msg, "amount"),
        decimal=int(decimal),
        signature=signature if isinstance(signature, str) and signature else None,
        raw=msg,
    )
