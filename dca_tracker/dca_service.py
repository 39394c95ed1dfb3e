# dca_tracker/dca_service.py
"""
Оркестрация зон DCA: валидация при записи, загрузка входных данных для
планировщика и деградация недоступных цены/капитала до нуля.
"""
import logging
import uuid
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from dca_tracker import config, zone_planner
from dca_tracker.exceptions import CapitalUnavailable, PriceUnavailable, StorageError, ZoneValidationError
from dca_tracker.models import DcaZoneComputed, DcaZoneData, EntryPointData
from dca_tracker.position_service import get_stablecoin_capital

logger = logging.getLogger(__name__)

PriceLookupFn = Callable[[str], Optional[Decimal]]


@dataclass
class ZonePlanResult:
    portfolio_id: str
    asset_symbol: str
    current_price: Decimal
    capital_total: Decimal
    zones: List[DcaZoneComputed]
    unallocated_pct: Decimal
    warnings: List[str] = field(default_factory=list)


def add_zone(
    store, portfolio_id: str, asset_symbol: str, price_min: Decimal, price_max: Decimal,
    percentual_base: Decimal, order: int = 1, label: Optional[str] = None
) -> Tuple[bool, str]:
    zone = DcaZoneData(
        zone_id=str(uuid.uuid4()), portfolio_id=portfolio_id, asset_symbol=asset_symbol.upper(),
        order=order, price_min=price_min, price_max=price_max, percentual_base=percentual_base,
        label=label, executed=False,
    )
    try:
        siblings = store.get_zones(portfolio_id, zone.asset_symbol)
        zone_planner.validate_zone(zone, siblings)
    except ZoneValidationError as e:
        return False, str(e)
    except StorageError as e:
        logger.error(f"[DCA] Не удалось загрузить зоны {portfolio_id}/{zone.asset_symbol}: {e}")
        return False, "Ошибка связи с Google Sheets."

    if not store.add_zone(zone):
        return False, "Ошибка записи зоны."
    logger.info(f"[DCA] Зона {zone.zone_id} ({zone.asset_symbol} #{zone.order}) создана.")
    return True, zone.zone_id


def update_zone(store, zone_id: str, **changes) -> Tuple[bool, str]:
    """
    Частичное обновление зоны (price_min, price_max, percentual_base, order,
    label, executed). Проверки выполняются над итоговым состоянием.
    """
    allowed = {'price_min', 'price_max', 'percentual_base', 'order', 'label', 'executed'}
    unknown = set(changes) - allowed
    if unknown:
        return False, f"Неизвестные поля: {', '.join(sorted(unknown))}."

    try:
        zone = store.get_zone(zone_id)
        if zone is None:
            return False, "Зона DCA не найдена."
        updated = replace(zone, **{k: v for k, v in changes.items() if v is not None or k == 'label'})
        siblings = store.get_zones(zone.portfolio_id, zone.asset_symbol)
        zone_planner.validate_zone(updated, siblings)
    except ZoneValidationError as e:
        return False, str(e)
    except StorageError as e:
        logger.error(f"[DCA] Не удалось загрузить зону {zone_id}: {e}")
        return False, "Ошибка связи с Google Sheets."

    if not store.update_zone(updated):
        return False, "Ошибка обновления зоны."
    return True, zone_id


def delete_zone(store, zone_id: str) -> Tuple[bool, str]:
    try:
        zone = store.get_zone(zone_id)
    except StorageError as e:
        logger.error(f"[DCA] Не удалось загрузить зону {zone_id}: {e}")
        return False, "Ошибка связи с Google Sheets."
    if zone is None:
        return False, "Зона DCA не найдена."
    if not store.delete_zone(zone):
        return False, "Ошибка удаления зоны."
    return True, zone_id


def _current_price(price_lookup: PriceLookupFn, asset_symbol: str) -> Decimal:
    """Цена актива или PriceUnavailable, если источник не дал данных."""
    try:
        price = price_lookup(asset_symbol)
    except Exception as e:
        # Внешний источник: любая ошибка означает "нет данных"
        raise PriceUnavailable(f"Ошибка получения цены {asset_symbol}: {e}") from e
    if price is None:
        raise PriceUnavailable(f"Цена {asset_symbol} недоступна.")
    return price


def compute_strategy(store, portfolio_id: str, asset_symbol: str, price_lookup: PriceLookupFn) -> ZonePlanResult:
    """
    Полный пересчет плана зон при каждом вызове.
    Недоступные цена и капитал заменяются нулем с предупреждением.
    InsufficientBalance из расчета капитала пробрасывается, ошибки зон -> StorageError.
    """
    asset_symbol = asset_symbol.upper()
    warnings: List[str] = []
    zones = store.get_zones(portfolio_id, asset_symbol)

    price_known = True
    try:
        current_price = _current_price(price_lookup, asset_symbol)
    except PriceUnavailable as e:
        warnings.append(f"{e} Используется 0.")
        current_price, price_known = Decimal('0'), False

    try:
        capital = get_stablecoin_capital(store, portfolio_id)
        if capital.is_zero():
            warnings.append("Капитал в стейблкоинах равен 0.")
    except CapitalUnavailable as e:
        warnings.append(f"{e} Используется 0.")
        capital = Decimal('0')

    computed = zone_planner.plan_zones(zones, current_price, capital)
    unallocated = zone_planner.unallocated_percentual(computed)
    # Подставная нулевая цена переводит все открытые зоны в SKIPPED
    if unallocated > 0 and price_known:
        warnings.append(f"Нераспределено {unallocated}%: нет активных или ожидающих зон.")
    for w in warnings:
        logger.warning(f"[DCA] {portfolio_id}/{asset_symbol}: {w}")

    return ZonePlanResult(
        portfolio_id=portfolio_id, asset_symbol=asset_symbol, current_price=current_price,
        capital_total=capital, zones=computed, unallocated_pct=unallocated, warnings=warnings,
    )


def generate_entry_points(
    store, portfolio_id: str, zone_id: str, number_of_entries: int, price_lookup: PriceLookupFn
) -> Tuple[bool, str, List[EntryPointData]]:
    """Делит рассчитанную стоимость зоны на лимитные точки входа."""
    if not 1 <= number_of_entries <= config.MAX_ENTRY_POINTS:
        return False, f"Количество точек должно быть от 1 до {config.MAX_ENTRY_POINTS}.", []

    try:
        zone = store.get_zone(zone_id)
    except StorageError as e:
        logger.error(f"[DCA] Не удалось загрузить зону {zone_id}: {e}")
        return False, "Ошибка связи с Google Sheets.", []
    if zone is None or zone.portfolio_id != portfolio_id:
        return False, "Зона DCA не найдена в этом портфеле.", []

    plan = compute_strategy(store, portfolio_id, zone.asset_symbol, price_lookup)
    computed = next((z for z in plan.zones if z.zone_id == zone_id), None)
    zone_value = computed.valor_usd if computed else Decimal('0')
    current_price = plan.current_price if plan.current_price > 0 else None

    points = zone_planner.split_entry_points(zone, number_of_entries, zone_value, current_price)
    return True, f"Создано {len(points)} точек входа.", points
