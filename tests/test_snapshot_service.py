from datetime import datetime
from decimal import Decimal

from dca_tracker import snapshot_service, utils
from dca_tracker.models import Position, TransactionData


def _pos(asset: str, qty: str, cost: str) -> Position:
    qty, cost = Decimal(qty), Decimal(cost)
    return Position(asset=asset, qty=qty, cost_usd_total=cost, avg_cost_usd=cost / qty if qty else Decimal("0"))


def test_snapshot_math():
    positions = {"BTC": _pos("BTC", "2", "80000"), "ETH": _pos("ETH", "10", "20000")}
    prices = {"BTC": Decimal("50000"), "ETH": Decimal("1500")}

    snapshot = snapshot_service.build_snapshot(positions, prices.get, "main")

    assert snapshot.value_usd == Decimal("115000")
    assert snapshot.cost_basis_usd == Decimal("100000")
    assert snapshot.unrealized_pnl == Decimal("15000")
    assert snapshot.unrealized_pct == Decimal("15")
    btc, eth = snapshot.positions
    assert (btc.symbol, btc.pnl, btc.pnl_pct) == ("BTC", Decimal("20000"), Decimal("25"))
    assert (eth.symbol, eth.pnl, eth.pnl_pct) == ("ETH", Decimal("-5000"), Decimal("-25"))


def test_missing_price_counts_as_zero():
    snapshot = snapshot_service.build_snapshot({"XYZ": _pos("XYZ", "5", "100")}, {}.get, "main")
    (xyz,) = snapshot.positions
    assert xyz.current_price == 0
    assert xyz.value_usd == 0
    assert xyz.pnl == Decimal("-100")
    assert snapshot.unrealized_pct == Decimal("-100")


def test_price_lookup_errors_do_not_break_snapshot():
    def broken(symbol):
        raise ConnectionError("exchange down")

    snapshot = snapshot_service.build_snapshot({"BTC": _pos("BTC", "1", "100")}, broken, "main")
    assert snapshot.value_usd == 0


def test_zero_cost_position_has_zero_pct():
    positions = {"AIR": Position(asset="AIR", qty=Decimal("100"))}
    snapshot = snapshot_service.build_snapshot(positions, {"AIR": Decimal("2")}.get, "main")
    assert snapshot.positions[0].pnl == Decimal("200")
    assert snapshot.positions[0].pnl_pct == 0
    assert snapshot.unrealized_pct == 0


def test_empty_portfolio_still_produces_snapshot():
    closed = {"BTC": Position(asset="BTC")}
    snapshot = snapshot_service.build_snapshot(closed, {}.get, "main")
    assert snapshot.positions == []
    assert snapshot.value_usd == 0
    assert snapshot.cost_basis_usd == 0
    assert snapshot.unrealized_pnl == 0
    assert snapshot.unrealized_pct == 0


def test_prefetch_is_called_once_for_active_assets():
    class Lookup:
        def __init__(self):
            self.prefetched = []

        def prefetch(self, assets):
            self.prefetched.append(list(assets))

        def __call__(self, symbol):
            return Decimal("1")

    lookup = Lookup()
    snapshot_service.build_snapshot({"BTC": _pos("BTC", "1", "1"), "OLD": Position(asset="OLD")}, lookup, "main")
    assert lookup.prefetched == [["BTC"]]


def test_create_portfolio_snapshot_persists(store):
    store.transactions.append(TransactionData(
        tx_id="t1", portfolio_id="main", tx_type="BUY", timestamp=datetime(2024, 1, 1),
        base_asset="BTC", base_qty=Decimal("1"), quote_qty=Decimal("30000"),
    ))
    success, _ = snapshot_service.create_portfolio_snapshot(store, "main", {"BTC": Decimal("33000")}.get)
    assert success
    assert len(store.snapshots) == 1
    assert store.snapshots[0].unrealized_pnl == Decimal("3000")


def test_create_portfolio_snapshot_skips_write_on_replay_failure(store):
    store.transactions.append(TransactionData(
        tx_id="t1", portfolio_id="main", tx_type="SELL", timestamp=datetime(2024, 1, 1),
        base_asset="BTC", base_qty=Decimal("1"),
    ))
    success, message = snapshot_service.create_portfolio_snapshot(store, "main", {}.get)
    assert not success
    assert "BTC" in message
    assert store.snapshots == []


def test_snapshot_all_portfolios_continues_after_failure(store):
    store.transactions.extend([
        TransactionData(tx_id="a", portfolio_id="bad", tx_type="WITHDRAW", timestamp=datetime(2024, 1, 1),
                        base_asset="ETH", base_qty=Decimal("1")),
        TransactionData(tx_id="b", portfolio_id="good", tx_type="DEPOSIT", timestamp=datetime(2024, 1, 1),
                        base_asset="USDT", base_qty=Decimal("100"), cost_basis_usd=Decimal("100")),
    ])
    success, message = snapshot_service.snapshot_all_portfolios(store, {"USDT": Decimal("1")}.get)
    assert not success
    assert "bad" in message
    assert [s.portfolio_id for s in store.snapshots] == ["good"]


def _stored_snapshot(day: int, portfolio_id: str = "main"):
    snapshot = snapshot_service.build_snapshot({}, {}.get, portfolio_id, created_at=datetime(2024, 1, day))
    snapshot.snapshot_id = f"s{day}"
    return snapshot


def test_snapshot_history_is_newest_first_within_period(store):
    store.snapshots = [_stored_snapshot(d) for d in (1, 5, 3, 9)] + [_stored_snapshot(4, "other")]

    history = snapshot_service.get_snapshot_history(
        store, "main", since=datetime(2024, 1, 2), until=datetime(2024, 1, 8, tzinfo=utils.get_current_timezone()))

    assert [s.snapshot_id for s in history] == ["s5", "s3"]


def test_snapshot_history_limit(store):
    store.snapshots = [_stored_snapshot(d) for d in range(1, 11)]

    assert [s.snapshot_id for s in snapshot_service.get_snapshot_history(store, "main", limit=2)] == ["s10", "s9"]
    assert len(snapshot_service.get_snapshot_history(store, "main", limit=1000)) == 10
