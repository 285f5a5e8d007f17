#=======================================
# file:  centinela/errors.py
#=======================================
from __future__ import annotations


class CentinelaError(Exception):
    """Base de los errores propios del pipeline."""


class ParseError(CentinelaError):
    """Payload (evento del feed, entrada de cola o documento) con forma inválida."""


class StoreError(CentinelaError):
    """El store no responde o el comando falló."""


class NotificationError(CentinelaError):
    """El sink de mensajería rechazó o no entregó la notificación."""

    def __init__(self, user_id: int, reason: str) -> None:
        super().__init__(f"user={user_id}: {reason}")
        self.user_id = user_id
        self.reason = reason


class WatcherLimitError(CentinelaError):
    def __init__(self, user_id: int, limit: int) -> None:
        super().__init__(f"user={user_id} already holds {limit} watchers")
        self.user_id = user_id
        self.limit = limit
