from datetime import datetime
from decimal import Decimal

import pytest

from dca_tracker import position_service
from dca_tracker.exceptions import InsufficientBalance
from dca_tracker.models import TransactionData


def _buy(portfolio_id: str, asset: str, qty: str, cost: str, tx_id: str) -> TransactionData:
    return TransactionData(
        tx_id=tx_id, portfolio_id=portfolio_id, tx_type="BUY", timestamp=datetime(2024, 1, 1),
        base_asset=asset, base_qty=Decimal(qty), quote_qty=Decimal(cost),
    )


def test_aggregate_positions_recomputes_average_across_portfolios(store):
    store.transactions += [
        _buy("main", "BTC", "1", "30000", "t1"),
        _buy("long", "BTC", "3", "150000", "t2"),
        _buy("long", "ETH", "2", "4000", "t3"),
    ]

    btc, eth = position_service.aggregate_positions(store)

    assert (btc.asset, btc.qty, btc.cost_usd_total) == ("BTC", Decimal("4"), Decimal("180000"))
    assert btc.avg_cost_usd == Decimal("45000")
    assert eth.avg_cost_usd == Decimal("2000")


def test_aggregate_of_no_portfolios_is_empty(store):
    assert position_service.aggregate_positions(store) == []


def test_aggregate_fails_when_any_portfolio_is_inconsistent(store):
    store.transactions += [
        _buy("main", "BTC", "1", "30000", "t1"),
        TransactionData(tx_id="t2", portfolio_id="broken", tx_type="SELL", timestamp=datetime(2024, 1, 2),
                        base_asset="BTC", base_qty=Decimal("1")),
    ]
    with pytest.raises(InsufficientBalance):
        position_service.aggregate_positions(store)


def test_sync_positions_writes_active_mirror(store):
    store.transactions.append(_buy("main", "BTC", "1", "30000", "t1"))
    success, _ = position_service.sync_positions(store, "main")
    assert success
    assert [p.asset for p in store.open_positions["main"]] == ["BTC"]
