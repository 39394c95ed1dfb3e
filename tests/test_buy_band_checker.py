"""Buy band alert checker tests."""

from datetime import datetime, timedelta
from decimal import Decimal

from dca_tracker import buy_band_checker
from dca_tracker.models import BuyBandData

NOW = datetime(2024, 5, 1, 12, 0)


def _band(band_id: str = "b1", target: str = "50000", executed: bool = False) -> BuyBandData:
    return BuyBandData(band_id=band_id, portfolio_id="main", asset_symbol="BTC",
                       target_price=Decimal(target), quantity=Decimal("0.1"), order=1, executed=executed)


class Notifier:
    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.messages = []

    async def __call__(self, message: str) -> bool:
        self.messages.append(message)
        return self.result


async def test_alert_created_and_marked_notified(store):
    store.bands.append(_band())
    notify = Notifier()

    result = await buy_band_checker.check_buy_bands(store, {"BTC": Decimal("49000")}.get, notify, now=NOW)

    assert (result.bands_checked, result.alerts_created, result.notified) == (1, 1, 1)
    assert len(store.alerts) == 1
    assert store.alerts[0].notified is True
    assert store.alerts[0].created_at == NOW
    assert "BTC" in notify.messages[0]


async def test_no_alert_above_target(store):
    store.bands.append(_band())
    notify = Notifier()

    result = await buy_band_checker.check_buy_bands(store, {"BTC": Decimal("51000")}.get, notify, now=NOW)

    assert result.alerts_created == 0
    assert store.alerts == []
    assert notify.messages == []


async def test_price_equal_to_target_triggers(store):
    store.bands.append(_band())
    result = await buy_band_checker.check_buy_bands(store, {"BTC": Decimal("50000")}.get, Notifier(), now=NOW)
    assert result.alerts_created == 1


async def test_second_check_inside_window_is_deduplicated(store):
    store.bands.append(_band())
    prices = {"BTC": Decimal("48000")}.get

    await buy_band_checker.check_buy_bands(store, prices, Notifier(), now=NOW)
    result = await buy_band_checker.check_buy_bands(store, prices, Notifier(), now=NOW + timedelta(hours=3))

    assert result.duplicates_skipped == 1
    assert result.alerts_created == 0
    assert len(store.alerts) == 1


async def test_check_after_window_creates_new_alert(store):
    store.bands.append(_band())
    prices = {"BTC": Decimal("48000")}.get

    await buy_band_checker.check_buy_bands(store, prices, Notifier(), now=NOW)
    result = await buy_band_checker.check_buy_bands(store, prices, Notifier(), now=NOW + timedelta(hours=5))

    assert result.alerts_created == 1
    assert len(store.alerts) == 2


async def test_failed_notification_keeps_alert(store):
    store.bands.append(_band())

    result = await buy_band_checker.check_buy_bands(store, {"BTC": Decimal("1")}.get, Notifier(False), now=NOW)

    assert result.alerts_created == 1
    assert result.notified == 0
    assert len(store.alerts) == 1
    assert store.alerts[0].notified is False


async def test_raising_notifier_keeps_alert(store):
    store.bands.append(_band())

    async def broken(message: str) -> bool:
        raise RuntimeError("telegram down")

    result = await buy_band_checker.check_buy_bands(store, {"BTC": Decimal("1")}.get, broken, now=NOW)

    assert result.alerts_created == 1
    assert store.alerts[0].notified is False


async def test_unknown_price_and_executed_bands_are_skipped(store):
    store.bands.extend([_band("b1"), _band("b2", executed=True)])

    result = await buy_band_checker.check_buy_bands(store, {}.get, Notifier(), now=NOW)

    assert result.bands_checked == 1
    assert store.alerts == []


def test_distance_to_target():
    assert buy_band_checker.distance_to_target_pct(Decimal("55"), Decimal("50")) == Decimal("10")
    assert buy_band_checker.distance_to_target_pct(Decimal("55"), Decimal("0")) == 0
