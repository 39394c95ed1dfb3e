import asyncio
import inspect
import pathlib
import sys
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dca_tracker import utils  # noqa: E402
from dca_tracker.exceptions import StorageError  # noqa: E402
from dca_tracker.models import (  # noqa: E402
    BuyBandAlertData, BuyBandData, DcaZoneData, PortfolioSnapshotData, Position, TransactionData,
)


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used in the suite."""

    config.addinivalue_line("markers", "asyncio: mark test as running in an asyncio event loop")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Execute async test functions without requiring pytest-asyncio."""

    test_function = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_function):
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            testargs = {arg: pyfuncitem.funcargs[arg] for arg in pyfuncitem._fixtureinfo.argnames}
            loop.run_until_complete(test_function(**testargs))
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None


class FakeStore:
    """In-memory stand-in for SheetsStore with the same method surface."""

    def __init__(self) -> None:
        self.transactions: List[TransactionData] = []
        self.open_positions: Dict[str, List[Position]] = {}
        self.snapshots: List[PortfolioSnapshotData] = []
        self.zones: List[DcaZoneData] = []
        self.bands: List[BuyBandData] = []
        self.alerts: List[BuyBandAlertData] = []
        self.statuses: List[str] = []
        self.fail_reads = False
        self.fail_writes = False

    def _check_read(self) -> None:
        if self.fail_reads:
            raise StorageError("sheets unavailable")

    def get_transactions(self, portfolio_id: str) -> List[TransactionData]:
        self._check_read()
        return [t for t in self.transactions if t.portfolio_id == portfolio_id]

    def list_portfolio_ids(self) -> List[str]:
        self._check_read()
        return sorted({t.portfolio_id for t in self.transactions})

    def add_transaction(self, tx: TransactionData) -> bool:
        if self.fail_writes:
            return False
        self.transactions.append(tx)
        return True

    def replace_open_positions(self, portfolio_id: str, positions: List[Position]) -> bool:
        if self.fail_writes:
            return False
        self.open_positions[portfolio_id] = list(positions)
        return True

    def add_snapshot(self, snapshot: PortfolioSnapshotData) -> bool:
        if self.fail_writes:
            return False
        self.snapshots.append(snapshot)
        return True

    def get_snapshots(self, portfolio_id: str) -> List[PortfolioSnapshotData]:
        self._check_read()
        return [s for s in self.snapshots if s.portfolio_id == portfolio_id]

    def get_zones(self, portfolio_id: str, asset_symbol: Optional[str] = None) -> List[DcaZoneData]:
        self._check_read()
        zones = [z for z in self.zones if z.portfolio_id == portfolio_id]
        if asset_symbol:
            zones = [z for z in zones if z.asset_symbol == asset_symbol.upper()]
        return sorted(zones, key=lambda z: z.order)

    def get_zone(self, zone_id: str) -> Optional[DcaZoneData]:
        self._check_read()
        return next((z for z in self.zones if z.zone_id == zone_id), None)

    def add_zone(self, zone: DcaZoneData) -> bool:
        if self.fail_writes:
            return False
        self.zones.append(zone)
        return True

    def update_zone(self, zone: DcaZoneData) -> bool:
        self.zones = [zone if z.zone_id == zone.zone_id else z for z in self.zones]
        return True

    def delete_zone(self, zone: DcaZoneData) -> bool:
        self.zones = [z for z in self.zones if z.zone_id != zone.zone_id]
        return True

    def get_pending_buy_bands(self) -> List[BuyBandData]:
        self._check_read()
        return [b for b in self.bands if not b.executed]

    def get_buy_bands(self, portfolio_id: str) -> List[BuyBandData]:
        self._check_read()
        return [b for b in self.bands if b.portfolio_id == portfolio_id]

    def get_buy_band(self, band_id: str) -> Optional[BuyBandData]:
        self._check_read()
        return next((b for b in self.bands if b.band_id == band_id), None)

    def add_buy_band(self, band: BuyBandData) -> bool:
        if self.fail_writes:
            return False
        self.bands.append(band)
        return True

    def update_buy_band(self, band: BuyBandData) -> bool:
        if self.fail_writes:
            return False
        self.bands = [band if b.band_id == band.band_id else b for b in self.bands]
        return True

    def delete_buy_band(self, band: BuyBandData) -> bool:
        self.bands = [b for b in self.bands if b.band_id != band.band_id]
        return True

    def get_alerts(self, band_id: Optional[str] = None) -> List[BuyBandAlertData]:
        self._check_read()
        return [a for a in self.alerts if band_id is None or a.band_id == band_id]

    def has_recent_alert(self, band_id: str, since: datetime) -> bool:
        since = utils.localize(since)
        return any(utils.localize(a.created_at) >= since for a in self.get_alerts(band_id))

    def add_alert(self, alert: BuyBandAlertData) -> bool:
        if self.fail_writes:
            return False
        self.alerts.append(replace(alert))
        return True

    def mark_alert_notified(self, alert: BuyBandAlertData) -> bool:
        for stored in self.alerts:
            if stored.alert_id == alert.alert_id:
                stored.notified = True
                return True
        return False

    def update_alert(self, alert: BuyBandAlertData) -> bool:
        if self.fail_writes:
            return False
        self.alerts = [replace(alert) if a.alert_id == alert.alert_id else a for a in self.alerts]
        return True

    def update_system_status(self, status: str, timestamp: datetime) -> bool:
        self.statuses.append(status)
        return True


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()
