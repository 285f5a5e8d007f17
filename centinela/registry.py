#=======================================
# file:  centinela/registry.py
#=======================================
"""
Registro de watchers.

- WatcherBook: colección indexada por identificador sobre el documento JSON
  único por pipeline ({identifier: [watcher, ...]}). Todo el documento se lee y
  reescribe en cada mutación; no hay locking (las carreras read-modify-write
  entre ediciones concurrentes son un gap conocido).
- WatchRegistry: set en memoria de identificadores vigilados, reconstruido
  cada `refresh_interval_s`. Consistencia eventual: un identificador nuevo
  sólo es visible para el ingestor tras el siguiente refresh.
"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, FrozenSet, List, Optional, Type

from loguru import logger
from pydantic import BaseModel, ValidationError

from .errors import ParseError, WatcherLimitError
from .obs import metrics as obs_metrics
from .runtime import is_stopped, sleep_or_stop
from .store import Store
from .watchers import to_document


class WatcherBook:
    def __init__(
        self,
        store: Store,
        document_key: str,
        watcher_model: Type[BaseModel],
        *,
        max_per_user: int,
        pipeline: str,
    ) -> None:
        self._store = store
        self.document_key = document_key
        self._model = watcher_model
        self.max_per_user = max_per_user
        self.pipeline = pipeline

    # --- lectura ---
    async def load_document(self) -> Optional[Dict[str, Any]]:
        """Documento completo, o None si la clave no existe."""
        raw = await self._store.get(self.document_key)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise ParseError(f"{self.document_key}: invalid JSON: {e!s}") from e
        if not isinstance(data, dict):
            raise ParseError(f"{self.document_key}: expected JSON object, got {type(data).__name__}")
        return data

    async def get_watchers(self, identifier: str) -> List[Any]:
        """Watchers actuales de un identificador (lectura fresca del store).

        Entradas que no validan se saltan con warning, el resto sigue.
        """
        doc = await self.load_document() or {}
        items = doc.get(identifier) or []
        if not isinstance(items, list):
            logger.warning(f"[registry:{self.pipeline}] {identifier}: watcher list is {type(items).__name__}, ignored")
            return []
        out: List[Any] = []
        for item in items:
            try:
                out.append(self._model.model_validate(item))
            except ValidationError as e:
                logger.warning(f"[registry:{self.pipeline}] {identifier}: skip malformed watcher {item!r}: {e.error_count()} errors")
        return out

    async def watchers_for_user(self, user_id: int) -> Dict[str, Any]:
        doc = await self.load_document() or {}
        out: Dict[str, Any] = {}
        for identifier, items in doc.items():
            for item in items if isinstance(items, list) else []:
                if isinstance(item, dict) and item.get("userId") == user_id:
                    try:
                        out[identifier] = self._model.model_validate(item)
                    except ValidationError:
                        logger.warning(f"[registry:{self.pipeline}] {identifier}: malformed watcher for user={user_id}")
                    break
        return out

    # --- escritura (read-modify-write del documento entero) ---
    async def _load_for_write(self) -> Dict[str, Any]:
        return await self.load_document() or {}

    async def _write(self, doc: Dict[str, Any]) -> None:
        await self._store.set(self.document_key, json.dumps(doc))

    async def put_watchers(self, identifier: str, watchers: List[Any]) -> None:
        doc = await self._load_for_write()
        if watchers:
            doc[identifier] = [to_document(w) for w in watchers]
        else:
            doc.pop(identifier, None)
        await self._write(doc)

    async def save_watcher(self, user_id: int, identifier: str, filters: BaseModel) -> Any:
        """Alta o edición del watcher (user, identifier). Respeta el máximo por usuario."""
        doc = await self._load_for_write()
        entries = doc.get(identifier)
        if not isinstance(entries, list):
            entries = []
        watcher = self._model.model_validate({"userId": user_id, "filters": filters.model_dump(by_alias=True, exclude_none=True)})

        for i, item in enumerate(entries):
            if isinstance(item, dict) and item.get("userId") == user_id:
                entries[i] = to_document(watcher)
                break
        else:
            held = sum(
                1
                for items in doc.values()
                if isinstance(items, list) and any(isinstance(x, dict) and x.get("userId") == user_id for x in items)
            )
            if held >= self.max_per_user:
                raise WatcherLimitError(user_id, self.max_per_user)
            entries.append(to_document(watcher))

        doc[identifier] = entries
        await self._write(doc)
        logger.info(f"[registry:{self.pipeline}] saved watcher user={user_id} id={identifier}")
        return watcher

    async def remove_watcher(self, user_id: int, identifier: str) -> bool:
        doc = await self._load_for_write()
        entries = doc.get(identifier)
        if not isinstance(entries, list):
            return False
        kept = [x for x in entries if not (isinstance(x, dict) and x.get("userId") == user_id)]
        if len(kept) == len(entries):
            return False
        if kept:
            doc[identifier] = kept
        else:
            doc.pop(identifier, None)
        await self._write(doc)
        logger.info(f"[registry:{self.pipeline}] removed watcher user={user_id} id={identifier}")
        return True

    async def set_active(self, user_id: int, identifier: str, active: bool) -> bool:
        doc = await self._load_for_write()
        for item in doc.get(identifier) or []:
            if isinstance(item, dict) and item.get("userId") == user_id:
                filters = item.setdefault("filters", {})
                filters["active"] = bool(active)
                await self._write(doc)
                return True
        return False


class WatchRegistry:
    """Set de identificadores vigilados para el test de pertenencia del ingestor."""

    def __init__(
        self,
        book: WatcherBook,
        *,
        refresh_interval_s: float = 30.0,
        stop: Optional[asyncio.Event] = None,
    ) -> None:
        self._book = book
        self._interval = refresh_interval_s
        self._stop = stop
        self._ids: FrozenSet[str] = frozenset()

    @property
    def pipeline(self) -> str:
        return self._book.pipeline

    @property
    def ids(self) -> FrozenSet[str]:
        return self._ids

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    async def refresh(self) -> bool:
        """Reconstruye el set desde las claves del documento.

        Documento ausente o corrupto: no-op, se conserva el set anterior.
        El reemplazo es un único swap de referencia, los lectores nunca ven
        un set a medio construir.
        """
        try:
            doc = await self._book.load_document()
        except ParseError as e:
            logger.warning(f"[registry:{self.pipeline}] refresh skipped: {e!s}")
            obs_metrics.registry_refresh_total.labels(self.pipeline, "malformed").inc()
            return False
        if doc is None:
            obs_metrics.registry_refresh_total.labels(self.pipeline, "absent").inc()
            return False

        self._ids = frozenset(doc.keys())
        obs_metrics.registry_refresh_total.labels(self.pipeline, "ok").inc()
        obs_metrics.registry_size.labels(self.pipeline).set(len(self._ids))
        logger.debug(f"[registry:{self.pipeline}] refreshed size={len(self._ids)}")
        return True

    async def run(self) -> None:
        logger.info(f"[registry:{self.pipeline}] refresher iniciado (cada {self._interval:.0f}s)")
        while not is_stopped(self._stop):
            if await sleep_or_stop(self._stop, self._interval):
                break
            try:
                await self.refresh()
            except Exception as e:
                logger.warning(f"[registry:{self.pipeline}] refresh error {type(e).__name__}: {e!s}")
                obs_metrics.registry_refresh_total.labels(self.pipeline, "error").inc()
        logger.info(f"[registry:{self.pipeline}] refresher detenido")
