import asyncio
import importlib.util
import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from centinela.alerts.dispatcher import OracleDispatcher, TransferDispatcher
from centinela.config import Config
from centinela.ingest.feed_ws import OracleIngestor, TransferIngestor
from centinela.pipelines import ORACLE, TRANSFER, build_dispatcher, build_ingestor, get_spec, run_ingest

ROOT = Path(__file__).resolve().parents[1]


def _cfg(**feed):
    return Config.model_validate({"feed": {"ws_url": "wss://feed.test", **feed}, "limits": {"max_price_alerts": 2}})


class _OneShotWS:
    def __init__(self, messages):
        self.messages = list(messages)
        self.sent = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def send(self, msg):
        self.sent.append(msg)

    async def _iter(self):
        for m in self.messages:
            yield m

    def __aiter__(self):
        return self._iter()


def test_get_spec():
    assert get_spec("oracle") is ORACLE
    assert get_spec("transfer") is TRANSFER
    with pytest.raises(ValueError):
        get_spec("nft")


def test_builders_wire_pipeline_classes(store, notifier):
    cfg = _cfg()
    assert isinstance(build_ingestor(ORACLE, store, cfg), OracleIngestor)
    assert isinstance(build_ingestor(TRANSFER, store, cfg), TransferIngestor)
    d = build_dispatcher(ORACLE, store, cfg, notifier)
    assert isinstance(d, OracleDispatcher)
    assert d.book.max_per_user == 2
    assert d.queue.queue_key == "oracle:alert:queue"
    t = build_dispatcher(TRANSFER, store, cfg, notifier)
    assert isinstance(t, TransferDispatcher)
    assert t.book.document_key == "transfers"


def test_run_ingest_refreshes_before_streaming(store):
    store.kv["oracles"] = json.dumps({"F1": [{"userId": 1, "filters": {"price": 10}}]})
    ws = _OneShotWS([json.dumps({"priceFeedAccount": "F1", "price": 10})])
    sessions = [ws]

    def _connect(url, **kwargs):
        if sessions:
            return sessions.pop(0)
        raise OSError("feed down")

    ing = build_ingestor(ORACLE, store, _cfg(max_reconnect_attempts=0, reconnect_delay_s=0), connect=_connect)
    asyncio.run(asyncio.wait_for(run_ingest(ing), timeout=2))

    assert "F1" in ing.registry
    queued = [json.loads(x) for x in store.lists["oracle:alert:queue"]]
    assert [q["priceFeedId"] for q in queued] == ["F1"]


# ---------------- CLI ----------------
@pytest.fixture
def cli_mod(monkeypatch, store):
    spec = importlib.util.spec_from_file_location("centinela_cli", ROOT / "scripts" / "cli.py")
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)
    monkeypatch.setattr(mod, "setup_logging", lambda *a, **kw: None)
    monkeypatch.setattr(mod, "Store", lambda url, password=None: store)
    return mod


def test_cli_help(cli_mod):
    res = CliRunner().invoke(cli_mod.cli, ["--help"])
    assert res.exit_code == 0
    for group in ("env", "ingest", "dispatch", "watch", "queue"):
        assert group in res.output


def test_cli_add_list_and_remove_price_watcher(cli_mod, store):
    runner = CliRunner()
    res = runner.invoke(cli_mod.cli, ["watch", "add-price", "42", "F1", "10", "--name", "SOL"])
    assert res.exit_code == 0, res.output
    assert json.loads(store.kv["oracles"]) == {
        "F1": [{"userId": 42, "filters": {"price": 10.0, "name": "SOL", "active": True}}]
    }

    res = runner.invoke(cli_mod.cli, ["watch", "ls", "oracle", "--user", "42"])
    assert json.loads(res.output)["F1"]["userId"] == 42

    res = runner.invoke(cli_mod.cli, ["watch", "rm", "oracle", "42", "F1"])
    assert "removed" in res.output
    assert json.loads(store.kv["oracles"]) == {}


def test_cli_limit_is_reported(cli_mod, store):
    runner = CliRunner()
    for i in range(3):
        assert runner.invoke(cli_mod.cli, ["watch", "add-transfer", "7", f"W{i}", "--no-receive"]).exit_code == 0
    res = runner.invoke(cli_mod.cli, ["watch", "add-transfer", "7", "W9"])
    assert res.exit_code == 1
    assert "W9" not in json.loads(store.kv["transfers"])


def test_cli_exits_when_store_unreachable(cli_mod, store):
    store.down.add("*")
    res = CliRunner().invoke(cli_mod.cli, ["queue", "depth"])
    assert res.exit_code == 2
