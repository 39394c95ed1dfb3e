# dca_tracker/buy_band_service.py
"""
Управление buy bands и алертами: создание, правка, ручное исполнение
(ALERTED -> EXECUTED), удаление, чтение алертов и отметка прочтения.
Проверка пересечения цены живет в buy_band_checker.
"""
import logging
import uuid
from dataclasses import replace
from decimal import Decimal
from typing import List, Optional, Tuple

from dca_tracker import utils
from dca_tracker.exceptions import BuyBandValidationError, StorageError
from dca_tracker.models import BuyBandAlertData, BuyBandData

logger = logging.getLogger(__name__)

MAX_ALERTS_LISTED = 100
BAND_UPDATE_FIELDS = {'target_price', 'quantity', 'executed', 'order'}


def validate_band(band: BuyBandData, siblings: List[BuyBandData]) -> None:
    """Один band на (портфель, актив, order). Сам band в siblings не учитывается."""
    if band.target_price is None or band.target_price <= 0:
        raise BuyBandValidationError("Целевая цена должна быть больше 0.")
    if band.quantity is None or band.quantity <= 0:
        raise BuyBandValidationError("Количество должно быть больше 0.")
    if band.order is None or band.order < 0:
        raise BuyBandValidationError("order не может быть отрицательным.")
    for other in siblings:
        if other.band_id == band.band_id:
            continue
        if other.asset_symbol.upper() == band.asset_symbol.upper() and other.order == band.order:
            raise BuyBandValidationError(f"Buy band {band.asset_symbol} #{band.order} уже существует.")


def add_buy_band(
    store, portfolio_id: str, asset_symbol: str, target_price: Decimal, quantity: Decimal, order: int = 0
) -> Tuple[bool, str]:
    band = BuyBandData(
        band_id=str(uuid.uuid4()), portfolio_id=portfolio_id, asset_symbol=asset_symbol.upper(),
        target_price=target_price, quantity=quantity, order=order, executed=False,
        created_at=utils.now_local(),
    )
    try:
        validate_band(band, store.get_buy_bands(portfolio_id))
    except BuyBandValidationError as e:
        return False, str(e)
    except StorageError as e:
        logger.error(f"[BANDS] Не удалось загрузить buy bands {portfolio_id}: {e}")
        return False, "Ошибка связи с Google Sheets."

    if not store.add_buy_band(band):
        return False, "Ошибка записи buy band."
    logger.info(f"[BANDS] Buy band {band.band_id} ({band.asset_symbol} #{band.order}) создан.")
    return True, band.band_id


def update_buy_band(store, band_id: str, **changes) -> Tuple[bool, str]:
    """Портфель и актив не меняются; проверки выполняются над итоговым состоянием."""
    unknown = set(changes) - BAND_UPDATE_FIELDS
    if unknown:
        return False, f"Неизвестные поля: {', '.join(sorted(unknown))}."

    try:
        band = store.get_buy_band(band_id)
        if band is None:
            return False, "Buy band не найден."
        updated = replace(band, **{k: v for k, v in changes.items() if v is not None})
        validate_band(updated, store.get_buy_bands(band.portfolio_id))
    except BuyBandValidationError as e:
        return False, str(e)
    except StorageError as e:
        logger.error(f"[BANDS] Не удалось загрузить buy band {band_id}: {e}")
        return False, "Ошибка связи с Google Sheets."

    if not store.update_buy_band(updated):
        return False, "Ошибка обновления buy band."
    return True, band_id


def mark_band_executed(store, band_id: str) -> Tuple[bool, str]:
    """Ручной переход в EXECUTED: band больше не проверяется."""
    success, message = update_buy_band(store, band_id, executed=True)
    if success:
        logger.info(f"[BANDS] Buy band {band_id} отмечен исполненным.")
    return success, message


def delete_buy_band(store, band_id: str) -> Tuple[bool, str]:
    try:
        band = store.get_buy_band(band_id)
    except StorageError as e:
        logger.error(f"[BANDS] Не удалось загрузить buy band {band_id}: {e}")
        return False, "Ошибка связи с Google Sheets."
    if band is None:
        return False, "Buy band не найден."
    if not store.delete_buy_band(band):
        return False, "Ошибка удаления buy band."
    return True, band_id


# --- Алерты ---
def list_alerts(store, read: Optional[bool] = None, limit: int = 50) -> List[BuyBandAlertData]:
    """Новые сверху. read=None -> все, иначе только прочитанные/непрочитанные."""
    alerts = list(reversed(store.get_alerts()))
    if read is not None:
        alerts = [a for a in alerts if bool(a.read) == read]
    return alerts[:max(0, min(limit, MAX_ALERTS_LISTED))]


def count_unread_alerts(store) -> int:
    return sum(1 for a in store.get_alerts() if not a.read)


def set_alert_read(store, alert_id: str, read: bool = True) -> Tuple[bool, str]:
    try:
        alert = next((a for a in store.get_alerts() if a.alert_id == alert_id), None)
    except StorageError as e:
        logger.error(f"[BANDS] Не удалось загрузить алерт {alert_id}: {e}")
        return False, "Ошибка связи с Google Sheets."
    if alert is None:
        return False, "Алерт не найден."
    if not store.update_alert(replace(alert, read=read)):
        return False, "Ошибка обновления алерта."
    return True, alert_id


def mark_all_alerts_read(store) -> Tuple[bool, int]:
    """Возвращает (все ли записаны, сколько алертов отмечено)."""
    unread = [a for a in store.get_alerts() if not a.read]
    updated = 0
    for alert in unread:
        if store.update_alert(replace(alert, read=True)):
            updated += 1
        else:
            logger.warning(f"[BANDS] Алерт {alert.alert_id} не отмечен прочитанным.")
    return updated == len(unread), updated
