# dca_tracker/buy_band_checker.py
"""
Проверка buy bands: сравнивает текущую цену с целевыми уровнями, создает
алерты (не чаще одного на band за ALERT_DEDUP_HOURS) и отправляет
уведомление в Telegram. Запись алерта первична, доставка выполняется по возможности.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Callable, Optional

from dca_tracker import config, utils
from dca_tracker.exceptions import NotificationDeliveryFailed, StorageError
from dca_tracker.models import BuyBandAlertData, BuyBandData
from dca_tracker.notifier import send_telegram_alert

logger = logging.getLogger(__name__)

HUNDRED = Decimal('100')

NotifyFn = Callable[[str], Awaitable[bool]]
PriceLookupFn = Callable[[str], Optional[Decimal]]


@dataclass
class CheckResult:
    bands_checked: int = 0
    alerts_created: int = 0
    notified: int = 0
    duplicates_skipped: int = 0


def distance_to_target_pct(current_price: Decimal, target_price: Decimal) -> Decimal:
    if target_price.is_zero():
        return Decimal('0')
    return (current_price - target_price) / target_price * HUNDRED


def build_alert_message(band: BuyBandData, current_price: Decimal) -> str:
    return (f"{band.asset_symbol} Zone {band.order} достигнута! Цена: {utils.format_price(current_price)} "
            f"/ Цель: {utils.format_price(band.target_price)}")


def build_telegram_message(band: BuyBandData, current_price: Decimal) -> str:
    distance = distance_to_target_pct(current_price, band.target_price)
    return "\n".join([
        "🎯 <b>BUY BAND ДОСТИГНУТ!</b>",
        "",
        f"💰 <b>{band.asset_symbol}</b>, Zone {band.order}",
        f"📉 Текущая цена: {utils.format_price(current_price)}",
        f"🎯 Целевая цена: {utils.format_price(band.target_price)}",
        f"📊 Расстояние: {utils.format_pct(distance)}",
        f"📦 Количество: {band.quantity} {band.asset_symbol}",
        f"📁 Портфель: {band.portfolio_id}",
    ])


async def _dispatch(notify: NotifyFn, message: str, alert: BuyBandAlertData) -> bool:
    try:
        delivered = await notify(message)
        if not delivered:
            raise NotificationDeliveryFailed(f"Уведомление по алерту {alert.alert_id} не доставлено.")
        return True
    except NotificationDeliveryFailed as e:
        logger.error(f"[BANDS] {e}")
        return False
    except Exception as e:
        # Сбой внешнего канала не влияет на запись алерта
        logger.error(f"[BANDS] Ошибка отправки уведомления по алерту {alert.alert_id}: {e}", exc_info=True)
        return False


async def check_buy_bands(
    store, price_lookup: PriceLookupFn, notify: NotifyFn = send_telegram_alert,
    now: Optional[datetime] = None
) -> CheckResult:
    now = now or utils.now_local()
    result = CheckResult()
    logger.info(f"[BANDS] Проверка buy bands ({now:%Y-%m-%d %H:%M:%S})...")

    bands = store.get_pending_buy_bands()
    if not bands:
        logger.info("[BANDS] Нет ожидающих buy bands.")
        return result

    prefetch = getattr(price_lookup, 'prefetch', None)
    if prefetch:
        prefetch({b.asset_symbol for b in bands})

    since = now - timedelta(hours=config.ALERT_DEDUP_HOURS)
    for band in bands:
        result.bands_checked += 1
        try:
            current_price = price_lookup(band.asset_symbol)
        except Exception as e:
            logger.warning(f"[BANDS] Цена {band.asset_symbol} недоступна: {e}")
            current_price = None
        if not current_price:
            continue

        if current_price > band.target_price:
            distance = distance_to_target_pct(current_price, band.target_price)
            logger.info(f"[BANDS] ○ {band.asset_symbol} Band #{band.order}: "
                        f"{utils.format_price(current_price)} ({utils.format_pct(distance)} от цели)")
            continue

        if store.has_recent_alert(band.band_id, since):
            logger.info(f"[BANDS] ⏭ {band.asset_symbol} Band #{band.order}: недавний алерт, пропуск.")
            result.duplicates_skipped += 1
            continue

        alert = BuyBandAlertData(
            alert_id=str(uuid.uuid4()), band_id=band.band_id, symbol=band.asset_symbol,
            target_price=band.target_price, current_price=current_price,
            message=build_alert_message(band, current_price), created_at=now, notified=False,
        )
        if not store.add_alert(alert):
            logger.error(f"[BANDS] Не удалось записать алерт для band {band.band_id}.")
            continue
        result.alerts_created += 1
        logger.info(f"[BANDS] 🎯 {band.asset_symbol} Band #{band.order}: алерт создан.")

        if await _dispatch(notify, build_telegram_message(band, current_price), alert):
            alert.notified = True
            if not store.mark_alert_notified(alert):
                logger.warning(f"[BANDS] Алерт {alert.alert_id} доставлен, но отметка не сохранена.")
            result.notified += 1

    logger.info(f"[BANDS] Готово: алертов {result.alerts_created}, уведомлений {result.notified}, "
                f"дубликатов пропущено {result.duplicates_skipped}.")
    return result


async def run_forever(store) -> None:
    from dca_tracker.price_service import PriceLookup

    logger.info("Сервис проверки buy bands запущен в циклическом режиме.")
    while True:
        try:
            await check_buy_bands(store, PriceLookup())
            store.update_system_status("OK", utils.now_local())
        except StorageError as e:
            logger.error(f"Цикл проверки buy bands завершился с ошибкой: {e}")
            store.update_system_status("ERROR", utils.now_local())
        except Exception as e:
            logger.critical(f"Критическая ошибка в главном цикле buy bands: {e}", exc_info=True)
            store.update_system_status("CRITICAL_ERROR", utils.now_local())

        logger.info(f"Следующий запуск через {config.BUY_BAND_CHECK_INTERVAL_SECONDS} секунд.")
        await asyncio.sleep(config.BUY_BAND_CHECK_INTERVAL_SECONDS)


# --- Главный блок запуска ---
if __name__ == "__main__":
    from dca_tracker.sheets_service import SheetsStore

    logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger('ccxt').setLevel(logging.WARNING)
    asyncio.run(run_forever(SheetsStore()))
