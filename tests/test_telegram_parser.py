from decimal import Decimal

import pytest

from dca_tracker.telegram_parser import (
    merge_amount_parts, normalize_amount_string, parse_command_args_advanced, tx_kwargs_from_args,
)


def test_positional_and_named_args():
    pos, named = parse_command_args_advanced(["BTC", "0.5", "30000", "fee:0.001", "notes:first", "buy"], 3)
    assert pos == ["BTC", "0.5", "30000"]
    assert named == {"fee": "0.001", "notes": "first buy"}


def test_positional_limit_stops_collection():
    pos, named = parse_command_args_advanced(["a", "b", "c"], 2)
    assert pos == ["a", "b"]
    assert named == {}


def test_quoted_and_empty_values():
    _, named = parse_command_args_advanced(['label:"dip zone"', "flag:"], 0)
    assert named == {"label": "dip zone", "flag": ""}


def test_keys_are_lowercased():
    _, named = parse_command_args_advanced(["PF:Main"], 0)
    assert named == {"pf": "Main"}


def test_merge_amount_parts():
    assert merge_amount_parts(["USDT", "12", "000,50"]) == ["USDT", "12 000,50"]
    assert merge_amount_parts(["BTC", "1", "500"]) == ["BTC", "1", "500"]


@pytest.mark.parametrize(
    "raw, expected",
    [("12 000,50", Decimal("12000.50")), ("0,001", Decimal("0.001")), ("42", Decimal("42")),
     ("", None), (None, None), ("abc", None)],
)
def test_normalize_amount_string(raw, expected):
    assert normalize_amount_string(raw) == expected


def test_buy_kwargs_with_fee_defaults_fee_asset_to_base():
    kwargs = tx_kwargs_from_args("buy", ["btc", "0.5", "30000"], {"fee": "0.001", "exch": "Binance"})
    assert kwargs == {
        "base_asset": "BTC", "base_qty": Decimal("0.5"), "quote_qty": Decimal("30000"),
        "fee_qty": Decimal("0.001"), "fee_asset": "BTC", "venue": "Binance",
    }


def test_sell_proceeds_are_optional():
    assert tx_kwargs_from_args("SELL", ["ETH", "1"], {}) == {"base_asset": "ETH", "base_qty": Decimal("1")}


def test_swap_kwargs():
    kwargs = tx_kwargs_from_args("SWAP", ["BTC", "0.5", "eth", "8"], {"value_usd": "30000"})
    assert kwargs["quote_asset"] == "ETH"
    assert kwargs["value_usd"] == Decimal("30000")


def test_deposit_cost_maps_to_cost_basis():
    kwargs = tx_kwargs_from_args("DEPOSIT", ["USDT", "1000"], {"cost": "1000"})
    assert kwargs["cost_basis_usd"] == Decimal("1000")


def test_fee_command_uses_fee_fields():
    assert tx_kwargs_from_args("FEE", ["BNB", "0.01"], {}) == {"fee_asset": "BNB", "fee_qty": Decimal("0.01")}


def test_missing_args_raise_usage():
    with pytest.raises(ValueError, match="/buy"):
        tx_kwargs_from_args("BUY", ["BTC", "1"], {})


def test_bad_number_raises():
    with pytest.raises(ValueError):
        tx_kwargs_from_args("WITHDRAW", ["BTC", "lots"], {})
