import asyncio
import json

from centinela.alert_queue import AlertQueue
from centinela.alerts.dispatcher import OracleDispatcher, TransferDispatcher
from centinela.events import parse_price_update, parse_transfer
from centinela.ingest.feed_ws import OracleIngestor, TransferIngestor
from centinela.registry import WatcherBook, WatchRegistry
from centinela.watchers import PriceWatcher, TransferWatcher


def _oracle_parts(store, notifier, **kw):
    book = WatcherBook(store, "oracles", PriceWatcher, max_per_user=3, pipeline="oracle")
    queue = AlertQueue(store, "oracle:alert:queue", "priceFeedId", parse_price_update, pipeline="oracle")
    disp = OracleDispatcher(queue, book, notifier, **kw)
    ing = OracleIngestor(WatchRegistry(book), queue, ws_url="wss://feed.test")
    return ing, disp


def _transfer_parts(store, notifier, **kw):
    book = WatcherBook(store, "transfers", TransferWatcher, max_per_user=3, pipeline="transfer")
    queue = AlertQueue(store, "transfer:alert:queue", "whaleAddress", parse_transfer, pipeline="transfer")
    disp = TransferDispatcher(queue, book, notifier, **kw)
    ing = TransferIngestor(WatchRegistry(book), queue, ws_url="wss://feed.test")
    return ing, disp


async def _drain(disp):
    while await disp.step():
        pass


def test_price_alert_end_to_end(store, notifier):
    store.kv["oracles"] = json.dumps({"F1": [{"userId": 42, "filters": {"price": 10, "name": "SOL", "active": True}}]})
    ing, disp = _oracle_parts(store, notifier)

    async def _run():
        await ing.registry.refresh()
        await ing.handle_message(json.dumps({"priceFeedAccount": "F1", "price": 10.4}))
        await ing.handle_message(json.dumps({"priceFeedAccount": "F1", "price": 11.0}))
        await _drain(disp)

    asyncio.run(_run())
    assert len(notifier.sent) == 1
    user_id, text, buttons = notifier.sent[0]
    assert user_id == 42
    assert "F1" in text and "SOL" in text and "10.4" in text
    assert buttons == [("🔴 Deactivate", "/sub-pa_active_F1")]
    assert store.lists["oracle:alert:queue"] == []


def test_inactive_price_watcher_is_not_notified(store, notifier):
    store.kv["oracles"] = json.dumps({"F1": [{"userId": 42, "filters": {"price": 10, "active": False}}]})
    ing, disp = _oracle_parts(store, notifier)

    async def _run():
        await ing.registry.refresh()
        await ing.handle_message(json.dumps({"priceFeedAccount": "F1", "price": 10}))
        await _drain(disp)

    asyncio.run(_run())
    assert notifier.sent == []


def test_whale_send_alert_end_to_end(store, notifier):
    store.kv["transfers"] = json.dumps(
        {"W1": [{"userId": 7, "filters": {"send": True, "receive": False, "amount": 100, "greater": True, "active": True}}]}
    )
    ing, disp = _transfer_parts(store, notifier)
    send = {"senderAddress": "W1", "receiverAddress": "X", "mintAddress": "M", "amount": 150, "signature": "sig1"}
    receive = {"senderAddress": "Y", "receiverAddress": "W1", "mintAddress": "M", "amount": 150}

    async def _run():
        await ing.registry.refresh()
        await ing.handle_message(json.dumps(send))
        await ing.handle_message(json.dumps(receive))
        await _drain(disp)

    asyncio.run(_run())
    assert len(notifier.sent) == 1
    user_id, text, buttons = notifier.sent[0]
    assert user_id == 7
    assert "https://solscan.io/tx/sig1" in text
    assert buttons is None


def test_transfer_amount_uses_decimals(store, notifier):
    store.kv["transfers"] = json.dumps({"W1": [{"userId": 7, "filters": {"send": True, "amount": 100, "greater": True}}]})
    ing, disp = _transfer_parts(store, notifier)
    # 150 * 10^6 unidades mínimas = 150 tokens
    ev = {"senderAddress": "W1", "receiverAddress": "X", "mintAddress": "M", "amount": 150_000_000, "decimal": 6}
    small = dict(ev, amount=50_000_000)

    async def _run():
        await ing.registry.refresh()
        await ing.handle_message(json.dumps(ev))
        await ing.handle_message(json.dumps(small))
        await _drain(disp)

    asyncio.run(_run())
    assert len(notifier.sent) == 1
    assert "150" in notifier.sent[0][1]


def test_failed_send_does_not_block_other_watchers(store, notifier):
    store.kv["oracles"] = json.dumps(
        {
            "F1": [
                {"userId": 1, "filters": {"price": 10, "active": True}},
                {"userId": 2, "filters": {"price": 10, "active": True}},
                {"userId": 3, "filters": {"price": 10, "active": True}},
            ]
        }
    )
    notifier.fail_for = {2}
    _, disp = _oracle_parts(store, notifier)

    async def _run():
        await disp.queue.enqueue("F1", parse_price_update({"priceFeedAccount": "F1", "price": 10}))
        entry = await disp.queue.dequeue()
        return await disp.process(entry)

    assert asyncio.run(_run()) == 2
    assert [s[0] for s in notifier.sent] == [1, 3]


def test_dispatcher_reads_watchers_fresh(store, notifier):
    store.kv["oracles"] = json.dumps({"F1": [{"userId": 1, "filters": {"price": 10, "active": True}}]})
    ing, disp = _oracle_parts(store, notifier)

    async def _run():
        await ing.registry.refresh()
        await ing.handle_message(json.dumps({"priceFeedAccount": "F1", "price": 10}))
        # watcher añadido después del encolado y sin refresh del registry
        doc = json.loads(store.kv["oracles"])
        doc["F1"].append({"userId": 2, "filters": {"price": 10, "active": True}})
        store.kv["oracles"] = json.dumps(doc)
        await _drain(disp)

    asyncio.run(_run())
    assert sorted(s[0] for s in notifier.sent) == [1, 2]


def test_entry_without_watchers_is_discarded(store, notifier):
    _, disp = _oracle_parts(store, notifier)

    async def _run():
        await disp.queue.enqueue("F1", parse_price_update({"priceFeedAccount": "F1", "price": 10}))
        handled = await disp.step()
        return handled, await disp.queue.depth()

    assert asyncio.run(_run()) == (True, 0)
    assert notifier.sent == []


def test_malformed_entry_is_discarded_and_next_processed(store, notifier):
    store.kv["oracles"] = json.dumps({"F1": [{"userId": 1, "filters": {"price": 10, "active": True}}]})
    _, disp = _oracle_parts(store, notifier)
    good = json.dumps({"priceFeedId": "F1", "data": {"priceFeedAccount": "F1", "price": 10}})
    # RPOP saca por la derecha: primero la corrupta
    store.lists["oracle:alert:queue"] = [good, "{not json"]

    asyncio.run(_drain(disp))
    assert [s[0] for s in notifier.sent] == [1]


def test_empty_queue_step_returns_false(store, notifier):
    _, disp = _oracle_parts(store, notifier)
    assert asyncio.run(disp.step()) is False


def test_run_loop_drains_and_stops(store, notifier):
    store.kv["oracles"] = json.dumps({"F1": [{"userId": 1, "filters": {"price": 10, "active": True}}]})
    stop = asyncio.Event()
    _, disp = _oracle_parts(store, notifier, poll_interval_s=0.01, stop=stop)

    async def _run():
        task = asyncio.create_task(disp.run())
        for _ in range(3):
            await disp.queue.enqueue("F1", parse_price_update({"priceFeedAccount": "F1", "price": 10.5}))
        for _ in range(100):
            if len(notifier.sent) == 3:
                break
            await asyncio.sleep(0.01)
        stop.set()
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(_run())
    assert len(notifier.sent) == 3


def test_run_loop_survives_store_outage(store, notifier):
    store.kv["oracles"] = json.dumps({"F1": [{"userId": 1, "filters": {"price": 10, "active": True}}]})
    stop = asyncio.Event()
    _, disp = _oracle_parts(store, notifier, poll_interval_s=0.01, error_backoff_s=0.01, stop=stop)

    async def _run():
        store.down.add("rpop")
        task = asyncio.create_task(disp.run())
        await asyncio.sleep(0.05)
        store.down.clear()
        await disp.queue.enqueue("F1", parse_price_update({"priceFeedAccount": "F1", "price": 10}))
        for _ in range(100):
            if notifier.sent:
                break
            await asyncio.sleep(0.01)
        stop.set()
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(_run())
    assert len(notifier.sent) == 1


def test_price_watcher_missing_active_flag_is_not_notified(store, notifier):
    store.kv["oracles"] = json.dumps({"F1": [{"userId": 42, "filters": {"price": 10}}]})
    ing, disp = _oracle_parts(store, notifier)

    async def _run():
        await ing.registry.refresh()
        await ing.handle_message(json.dumps({"priceFeedAccount": "F1", "price": 10.5}))
        await _drain(disp)

    asyncio.run(_run())
    assert notifier.sent == []


def test_transfer_watcher_missing_send_flag_is_not_notified_on_send(store, notifier):
    store.kv["transfers"] = json.dumps({"W1": [{"userId": 7, "filters": {"receive": True, "active": True}}]})
    ing, disp = _transfer_parts(store, notifier)
    send = {"senderAddress": "W1", "receiverAddress": "X", "mintAddress": "M", "amount": 5}
    receive = {"senderAddress": "Y", "receiverAddress": "W1", "mintAddress": "M", "amount": 5}

    async def _run():
        await ing.registry.refresh()
        await ing.handle_message(json.dumps(send))
        await ing.handle_message(json.dumps(receive))
        await _drain(disp)

    asyncio.run(_run())
    assert [s[0] for s in notifier.sent] == [7]
    assert notifier.sent[0][1].startswith("📥")
