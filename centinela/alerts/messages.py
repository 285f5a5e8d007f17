#=======================================
# file : centinela/alerts/messages.py
#=======================================
from __future__ import annotations

from html import escape
from typing import List, Optional, Tuple

from centinela.events import PriceUpdate, TransferEvent
from centinela.watchers import Direction

SOLSCAN_TX = "https://solscan.io/tx/"


def _fmt_amount(x: float) -> str:
    # miles con coma, hasta 3 decimales sin ceros de cola
    s = f"{x:,.3f}".rstrip("0").rstrip(".")
    return s or "0"


def _fmt_price(x: float) -> str:
    return f"{x:,.8f}".rstrip("0").rstrip(".")


def deactivate_callback(feed_id: str) -> str:
    return f"/sub-pa_active_{feed_id}"


def render_price_alert(feed_id: str, event: PriceUpdate, name: str = "") -> Tuple[str, List[Tuple[str, str]]]:
    lines = ["📈 <b>Token Price Alert</b>", ""]
    if name:
        lines.append(f"<b>Token:</b> {escape(name)}")
    lines.append(f"<b>Feed:</b> <code>{escape(feed_id)}</code>")
    lines.append(f"<b>Price Reached:</b> ${_fmt_price(event.price)}")
    return "\n".join(lines), [("🔴 Deactivate", deactivate_callback(feed_id))]


def render_transfer_alert(event: TransferEvent, direction: Optional[Direction] = None) -> str:
    icon = "📥" if direction == "receive" else "📤"
    lines = [
        f"{icon} <b>Token Transfer Alert</b>",
        "",
        f"📦 <b>Amount:</b> {_fmt_amount(event.token_amount)}",
        f"🪙 <b>Mint:</b> <code>{escape(event.mint)}</code>",
        "",
        f"👤 <b>From:</b> <code>{escape(event.sender)}</code>",
        f"👤 <b>To:</b> <code>{escape(event.receiver)}</code>",
    ]
    if event.signature:
        lines += ["", f'🔗 <b>Tx:</b> <a href="{SOLSCAN_TX}{escape(event.signature)}">View on Solscan</a>']
    return "\n".join(lines)
