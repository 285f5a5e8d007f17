import pytest

from centinela.events import parse_transfer
from centinela.watchers import (
    PriceFilter,
    PriceWatcher,
    TransferFilter,
    TransferWatcher,
    price_matches,
    to_document,
    transfer_direction,
    transfer_matches,
)


@pytest.mark.parametrize(
    "price, expected",
    [
        (10.0, True),          # límite inferior incluido
        (10.4, True),
        (10.9999, True),
        (11.0, False),         # límite superior excluido
        (9.9999, False),
        (50.0, False),
    ],
)
def test_price_window_is_half_open_and_one_unit_wide(price, expected):
    assert price_matches(PriceFilter(price=10, active=True), price) is expected


def test_price_inactive_never_matches():
    assert not price_matches(PriceFilter(price=10, active=False), 10.0)


def _transfer(sender="W1", receiver="X", mint="M", amount=150, decimal=0):
    return parse_transfer(
        {"senderAddress": sender, "receiverAddress": receiver, "mintAddress": mint, "amount": amount, "decimal": decimal}
    )


def test_direction_is_fixed_by_queued_identifier():
    ev = _transfer(sender="W1", receiver="W2")
    assert transfer_direction(ev, "W1") == "send"
    assert transfer_direction(ev, "W2") == "receive"


def test_send_disabled_never_matches_send_event():
    f = TransferFilter(send=False, receive=True, active=True)
    assert not transfer_matches(f, _transfer(), "send")
    assert transfer_matches(f, _transfer(), "receive")


def test_receive_disabled_never_matches_receive_event():
    f = TransferFilter(send=True, receive=False, active=True)
    assert not transfer_matches(f, _transfer(), "receive")


def test_mint_restriction_requires_exact_mint():
    f = TransferFilter(send=True, mintAddress="M", active=True)
    assert transfer_matches(f, _transfer(mint="M"), "send")
    assert not transfer_matches(f, _transfer(mint="OTHER"), "send")


def test_amount_greater_is_strict():
    f = TransferFilter(send=True, amount=100, greater=True)
    assert transfer_matches(f, _transfer(amount=150), "send")
    assert not transfer_matches(f, _transfer(amount=100), "send")


def test_amount_less_or_equal_is_inclusive():
    f = TransferFilter(send=True, amount=100, greater=False)
    assert transfer_matches(f, _transfer(amount=100), "send")
    assert transfer_matches(f, _transfer(amount=50), "send")
    assert not transfer_matches(f, _transfer(amount=101), "send")


def test_amount_compared_in_token_units():
    f = TransferFilter(send=True, amount=1, greater=True)
    assert transfer_matches(f, _transfer(amount=1_500_000_000, decimal=9), "send")
    assert not transfer_matches(f, _transfer(amount=500_000_000, decimal=9), "send")


def test_inactive_transfer_filter_never_matches():
    assert not transfer_matches(TransferFilter(send=True, active=False), _transfer(), "send")


def test_watcher_document_uses_camel_case_and_drops_unset():
    w = TransferWatcher.model_validate({"userId": 7, "filters": {"send": True, "receive": False, "active": True}})
    doc = to_document(w)
    assert doc["userId"] == 7
    assert "mintAddress" not in doc["filters"]
    assert "amount" not in doc["filters"]


def test_price_watcher_without_active_flag_is_off():
    w = PriceWatcher.model_validate({"userId": 1, "filters": {"price": 10}})
    assert w.filters.active is False
    assert price_matches(w.filters, 10.5) is False


def test_transfer_watcher_without_send_flag_ignores_sends():
    w = TransferWatcher.model_validate({"userId": 7, "filters": {"receive": True, "active": True}})
    assert transfer_matches(w.filters, _transfer(), "send") is False
    assert transfer_matches(w.filters, _transfer(), "receive") is True


def test_transfer_watcher_without_receive_flag_ignores_receives():
    w = TransferWatcher.model_validate({"userId": 7, "filters": {"send": True}})
    assert transfer_matches(w.filters, _transfer(), "receive") is False
    # sin "active" sigue activo
    assert transfer_matches(w.filters, _transfer(), "send") is True


@pytest.mark.parametrize("stored", ["100", True, None, {"v": 100}])
def test_non_numeric_amount_is_no_threshold(stored):
    w = TransferWatcher.model_validate({"userId": 7, "filters": {"send": True, "amount": stored, "greater": True}})
    assert w.filters.amount is None
    assert transfer_matches(w.filters, _transfer(amount=1), "send") is True


def test_numeric_amount_keeps_type():
    w = TransferWatcher.model_validate({"userId": 7, "filters": {"send": True, "amount": 100}})
    assert w.filters.amount == 100
    assert to_document(w)["filters"]["amount"] == 100
