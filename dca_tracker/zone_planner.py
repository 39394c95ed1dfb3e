# dca_tracker/zone_planner.py
"""
Адаптивный планировщик зон DCA.

Для каждой зоны вычисляет статус относительно текущей цены и перераспределяет
процент пропущенных зон на зоны, которые еще достижимы. Сумма процентов
ACTIVE + WAITING + FILLED всегда равна исходной сумме, кроме случая, когда
пул пропущенных зон некуда распределить (он остается нераспределенным).
"""
from decimal import Decimal
from typing import Iterable, List, Optional

from dca_tracker.exceptions import AllocationOverflow, DuplicateZoneOrder, InvalidZoneRange, ZoneValidationError
from dca_tracker.models import DcaZoneComputed, DcaZoneData, EntryPointData, ZoneStatus

ZERO = Decimal('0')
HUNDRED = Decimal('100')


def classify_zone(zone: DcaZoneData, current_price: Decimal) -> ZoneStatus:
    if zone.executed:
        return ZoneStatus.FILLED
    if zone.price_min <= current_price <= zone.price_max:
        return ZoneStatus.ACTIVE
    if zone.price_max < current_price:
        # Зона ниже цены: достижима при дальнейшем снижении
        return ZoneStatus.WAITING
    return ZoneStatus.SKIPPED


def distance_pct(zone: DcaZoneData, current_price: Decimal) -> Decimal:
    """Знаковое расстояние в % от текущей цены до ближайшей границы зоны."""
    if current_price <= 0:
        return ZERO
    if zone.price_max < current_price:
        edge = zone.price_max
    elif zone.price_min > current_price:
        edge = zone.price_min
    else:
        return ZERO
    return (edge - current_price) / current_price * HUNDRED


def plan_zones(zones: Iterable[DcaZoneData], current_price: Decimal, capital_total: Decimal) -> List[DcaZoneComputed]:
    """
    Чистая функция: зоны + цена + капитал -> рассчитанные зоны (по order).
    Входные данные считаются уже провалидированными.
    """
    ordered = sorted(zones, key=lambda z: z.order)
    statuses = [classify_zone(z, current_price) for z in ordered]

    skipped_pool = sum(
        (z.percentual_base for z, s in zip(ordered, statuses) if s == ZoneStatus.SKIPPED), ZERO)
    absorbing_base = sum(
        (z.percentual_base for z, s in zip(ordered, statuses)
         if s in (ZoneStatus.ACTIVE, ZoneStatus.WAITING)), ZERO)

    computed = []
    for zone, status in zip(ordered, statuses):
        if status == ZoneStatus.SKIPPED:
            adjusted = ZERO
        elif status == ZoneStatus.FILLED:
            adjusted = zone.percentual_base
        elif absorbing_base > 0:
            adjusted = zone.percentual_base + skipped_pool * (zone.percentual_base / absorbing_base)
        else:
            adjusted = zone.percentual_base

        computed.append(DcaZoneComputed(
            zone_id=zone.zone_id,
            order=zone.order,
            label=zone.label,
            price_min=zone.price_min,
            price_max=zone.price_max,
            percentual_base=zone.percentual_base,
            percentual_adjusted=adjusted,
            valor_usd=adjusted / HUNDRED * capital_total,
            status=status,
            distancia_pct=distance_pct(zone, current_price),
        ))
    return computed


def unallocated_percentual(computed: Iterable[DcaZoneComputed]) -> Decimal:
    """Процент пропущенных зон, который не удалось распределить."""
    computed = list(computed)
    total_base = sum((z.percentual_base for z in computed), ZERO)
    total_adjusted = sum((z.percentual_adjusted for z in computed), ZERO)
    return max(total_base - total_adjusted, ZERO)


# --- Валидация при записи (планировщик ее не выполняет) ---

def validate_zone(zone: DcaZoneData, siblings: Iterable[DcaZoneData]) -> None:
    """
    Проверяет зону перед записью.
    siblings: зоны того же портфеля и актива; сама зона исключается по zone_id.
    """
    if zone.price_min >= zone.price_max:
        raise InvalidZoneRange(zone.price_min, zone.price_max)
    if zone.price_min < 0:
        raise ZoneValidationError("priceMin не может быть отрицательным.")
    if not (ZERO <= zone.percentual_base <= HUNDRED):
        raise ZoneValidationError(f"percentualBase должен быть в диапазоне 0..100, получено {zone.percentual_base}.")

    others = [s for s in siblings if s.zone_id != zone.zone_id]
    existing_total = sum((s.percentual_base for s in others), ZERO)
    if existing_total + zone.percentual_base > HUNDRED:
        raise AllocationOverflow(existing_total, zone.percentual_base)
    if any(s.order == zone.order for s in others):
        raise DuplicateZoneOrder(
            f"Уже существует зона с order={zone.order} для {zone.asset_symbol}.")


# --- Точки входа внутри зоны ---

def split_entry_points(
    zone: DcaZoneData, number_of_entries: int, zone_value_usd: Decimal,
    current_price: Optional[Decimal] = None
) -> List[EntryPointData]:
    """
    Делит стоимость зоны на N равных лимитных точек от price_min до
    min(price_max, current_price), от меньшей цены к большей.
    """
    if number_of_entries < 1:
        raise ValueError("number_of_entries должен быть >= 1")

    price_min = zone.price_min
    price_max = zone.price_max
    if current_price is not None and current_price > 0:
        price_max = min(price_max, current_price)
    if price_max < price_min:
        price_max = price_min

    step = (price_max - price_min) / (number_of_entries - 1) if number_of_entries > 1 else ZERO
    value_per_entry = zone_value_usd / number_of_entries

    return [
        EntryPointData(
            zone_id=zone.zone_id,
            entry_order=i + 1,
            target_price=price_min + step * i,
            value_usd=value_per_entry,
        )
        for i in range(number_of_entries)
    ]
