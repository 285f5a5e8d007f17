#=======================================
# file : centinela/alerts/notifier.py
#=======================================
from __future__ import annotations

from typing import Optional, Protocol, Sequence, Tuple

from loguru import logger
from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup, LinkPreviewOptions
from telegram.error import TelegramError

from centinela.errors import NotificationError
from centinela.obs import metrics as obs_metrics

# (texto, callback_data)
Button = Tuple[str, str]


class Notifier(Protocol):
    async def send(self, user_id: int, text: str, *, buttons: Optional[Sequence[Button]] = None) -> None:
        ...


def _keyboard(buttons: Optional[Sequence[Button]]) -> Optional[InlineKeyboardMarkup]:
    if not buttons:
        return None
    return InlineKeyboardMarkup([[InlineKeyboardButton(text, callback_data=data)] for text, data in buttons])


class TelegramNotifier:
    """Envía la alerta al chat del usuario (chat_id == user id) en HTML.

    Best-effort: sin reintentos ni timeout propio. Los fallos salen como
    NotificationError para que el dispatcher los loguee y siga con el resto.
    """

    channel = "telegram/alerts"

    def __init__(self, token: Optional[str], *, disable_web_page_preview: bool = True, bot: Optional[Bot] = None) -> None:
        self._token = token
        self._preview_off = disable_web_page_preview
        self._bot = bot or (Bot(token=token) if token else None)
        if self._bot is None:
            logger.warning("[telegram] missing token: notifications disabled (logged only)")

    async def send(self, user_id: int, text: str, *, buttons: Optional[Sequence[Button]] = None) -> None:
        obs_metrics.dispatch_attempts_total.labels(channel=self.channel).inc()
        if self._bot is None:
            logger.info(f"[telegram] {user_id} (skipped): {text}")
            obs_metrics.dispatch_dropped_total.labels(channel=self.channel, reason="disabled").inc()
            return
        try:
            await self._bot.send_message(
                chat_id=user_id,
                text=text,
                parse_mode="HTML",
                link_preview_options=LinkPreviewOptions(is_disabled=self._preview_off),
                reply_markup=_keyboard(buttons),
            )
        except TelegramError as e:
            obs_metrics.dispatch_fail_total.labels(channel=self.channel, kind=type(e).__name__).inc()
            raise NotificationError(user_id, str(e)) from e
        obs_metrics.dispatch_success_total.labels(channel=self.channel).inc()
        logger.info(f"[telegram] sent to {user_id}")

    async def close(self) -> None:
        if self._bot is not None:
            try:
                await self._bot.shutdown()
            except TelegramError as e:
                logger.warning(f"[telegram] shutdown error: {e!s}")
