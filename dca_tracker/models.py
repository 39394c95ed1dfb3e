# dca_tracker/models.py
"""
Централизованное определение структур данных (моделей) для проекта.
Использование dataclasses обеспечивает строгую типизацию и предсказуемость
объектов, передаваемых между движком учета, планировщиком и хранилищем.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional


class TransactionType(str, Enum):
    BUY = 'BUY'
    SELL = 'SELL'
    SWAP = 'SWAP'
    DEPOSIT = 'DEPOSIT'
    WITHDRAW = 'WITHDRAW'
    FEE = 'FEE'


class ZoneStatus(str, Enum):
    ACTIVE = 'ACTIVE'      # цена внутри диапазона зоны
    WAITING = 'WAITING'    # зона ниже цены, еще достижима
    SKIPPED = 'SKIPPED'    # цена ушла ниже зоны, зона не исполнена
    FILLED = 'FILLED'      # зона помечена как исполненная


@dataclass
class TransactionData:
    """Модель для одной транзакции портфеля (из листа Transactions)."""
    # Обязательные поля
    tx_id: str
    portfolio_id: str
    tx_type: str
    timestamp: datetime
    # Опциональные поля (набор зависит от типа транзакции)
    base_asset: Optional[str] = None
    base_qty: Optional[Decimal] = None
    quote_asset: Optional[str] = None
    quote_qty: Optional[Decimal] = None
    value_usd: Optional[Decimal] = None        # только SWAP
    cost_basis_usd: Optional[Decimal] = None   # только DEPOSIT
    fee_asset: Optional[str] = None
    fee_qty: Optional[Decimal] = None
    venue: Optional[str] = None
    notes: Optional[str] = None
    row_number: Optional[int] = None


@dataclass
class Position:
    """Производная позиция по активу. Не хранится, пересчитывается replay."""
    asset: str
    qty: Decimal = Decimal('0')
    cost_usd_total: Decimal = Decimal('0')
    avg_cost_usd: Decimal = Decimal('0')


@dataclass
class PositionSnapshotData:
    """Замороженный срез одной позиции внутри снимка портфеля."""
    symbol: str
    qty: Decimal
    avg_cost: Decimal
    current_price: Decimal
    value_usd: Decimal
    cost_total: Decimal
    pnl: Decimal
    pnl_pct: Decimal


@dataclass
class PortfolioSnapshotData:
    """Модель для снимка стоимости портфеля (из листа Portfolio_Snapshots)."""
    snapshot_id: str
    portfolio_id: str
    created_at: datetime
    value_usd: Decimal
    cost_basis_usd: Decimal
    unrealized_pnl: Decimal
    unrealized_pct: Decimal
    positions: List[PositionSnapshotData] = field(default_factory=list)
    row_number: Optional[int] = None


@dataclass
class DcaZoneData:
    """Модель для ценовой зоны DCA (из листа Dca_Zones)."""
    zone_id: str
    portfolio_id: str
    asset_symbol: str
    order: int
    price_min: Decimal
    price_max: Decimal
    percentual_base: Decimal
    label: Optional[str] = None
    executed: Optional[bool] = False
    row_number: Optional[int] = None


@dataclass
class DcaZoneComputed:
    """Результат работы планировщика для одной зоны. Никогда не сохраняется."""
    zone_id: str
    order: int
    label: Optional[str]
    price_min: Decimal
    price_max: Decimal
    percentual_base: Decimal
    percentual_adjusted: Decimal
    valor_usd: Decimal
    status: ZoneStatus
    distancia_pct: Decimal


@dataclass
class EntryPointData:
    """Один лимитный ордер-ориентир внутри зоны."""
    zone_id: str
    entry_order: int
    target_price: Decimal
    value_usd: Decimal


@dataclass
class BuyBandData:
    """Модель для ценового уровня покупки (из листа Buy_Bands)."""
    band_id: str
    portfolio_id: str
    asset_symbol: str
    target_price: Decimal
    quantity: Decimal
    order: Optional[int] = 0
    executed: Optional[bool] = False
    created_at: Optional[datetime] = None
    row_number: Optional[int] = None


@dataclass
class BuyBandAlertData:
    """Модель для сработавшего алерта (из листа Buy_Band_Alerts)."""
    alert_id: str
    band_id: str
    symbol: str
    target_price: Decimal
    current_price: Decimal
    message: str
    created_at: datetime
    notified: Optional[bool] = False
    read: Optional[bool] = False
    row_number: Optional[int] = None
