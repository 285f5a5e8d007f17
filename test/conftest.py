import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from centinela.errors import NotificationError, StoreError  # noqa: E402


class FakeStore:
    """Store en memoria con la misma superficie que centinela.store.Store."""

    def __init__(self) -> None:
        self.kv: dict[str, str] = {}
        self.lists: dict[str, list[str]] = {}
        self.down: set[str] = set()
        self.gets = 0
        self.closed = False

    def _check(self, op: str) -> None:
        if op in self.down or "*" in self.down:
            raise StoreError(f"{op} unavailable")

    async def connect(self) -> None:
        self._check("ping")

    async def close(self) -> None:
        self.closed = True

    async def ping(self) -> bool:
        self._check("ping")
        return True

    async def get(self, key):
        self._check("get")
        self.gets += 1
        return self.kv.get(key)

    async def set(self, key, value):
        self._check("set")
        self.kv[key] = value

    async def lpush(self, key, value):
        self._check("lpush")
        lst = self.lists.setdefault(key, [])
        lst.insert(0, value)
        return len(lst)

    async def rpop(self, key):
        self._check("rpop")
        lst = self.lists.get(key)
        return lst.pop() if lst else None

    async def llen(self, key):
        self._check("llen")
        return len(self.lists.get(key, []))


class RecordingNotifier:
    def __init__(self, fail_for=()) -> None:
        self.sent: list[tuple] = []
        self.fail_for = set(fail_for)

    async def send(self, user_id, text, *, buttons=None):
        if user_id in self.fail_for:
            raise NotificationError(user_id, "403 Forbidden: bot was blocked by the user")
        self.sent.append((user_id, text, buttons))


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()
