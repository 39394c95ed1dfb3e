# dca_tracker/snapshot_service.py
import logging
import time
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from dca_tracker import config, ledger, utils
from dca_tracker.exceptions import LedgerError, StorageError
from dca_tracker.models import PortfolioSnapshotData, Position, PositionSnapshotData
from dca_tracker.position_service import calc_positions

logger = logging.getLogger(__name__)

ZERO = Decimal('0')
HUNDRED = Decimal('100')
MAX_SNAPSHOT_HISTORY = 365

PriceLookupFn = Callable[[str], Optional[Decimal]]


def _safe_price(price_lookup: PriceLookupFn, symbol: str) -> Decimal:
    """Цена или 0, если источник недоступен."""
    try:
        price = price_lookup(symbol)
    except Exception as e:
        # Внешний источник: любая ошибка означает "нет данных"
        logger.warning(f"[SNAPSHOT] Цена {symbol} недоступна: {e}")
        return ZERO
    if price is None:
        logger.warning(f"[SNAPSHOT] Цена {symbol} недоступна, используется 0.")
        return ZERO
    return price


def _pct(pnl: Decimal, cost: Decimal) -> Decimal:
    return ZERO if cost.is_zero() else pnl / cost * HUNDRED


def build_snapshot(
    positions: Dict[str, Position], price_lookup: PriceLookupFn, portfolio_id: str,
    created_at: Optional[datetime] = None
) -> PortfolioSnapshotData:
    """
    Строит снимок по позициям с qty > 0. Никогда не падает из-за цен
    или пустого портфеля.
    """
    active = ledger.active_positions(positions)
    prefetch = getattr(price_lookup, 'prefetch', None)
    if prefetch and active:
        prefetch([p.asset for p in active])

    total_value, total_cost = ZERO, ZERO
    pos_snapshots: List[PositionSnapshotData] = []
    for pos in active:
        price = _safe_price(price_lookup, pos.asset)
        value = pos.qty * price
        pnl = value - pos.cost_usd_total
        total_value += value
        total_cost += pos.cost_usd_total
        pos_snapshots.append(PositionSnapshotData(
            symbol=pos.asset, qty=pos.qty, avg_cost=pos.avg_cost_usd, current_price=price,
            value_usd=value, cost_total=pos.cost_usd_total, pnl=pnl, pnl_pct=_pct(pnl, pos.cost_usd_total),
        ))

    unrealized_pnl = total_value - total_cost
    return PortfolioSnapshotData(
        snapshot_id=str(uuid.uuid4()),
        portfolio_id=portfolio_id,
        created_at=created_at or utils.now_local(),
        value_usd=total_value,
        cost_basis_usd=total_cost,
        unrealized_pnl=unrealized_pnl,
        unrealized_pct=_pct(unrealized_pnl, total_cost),
        positions=pos_snapshots,
    )


def create_portfolio_snapshot(store, portfolio_id: str, price_lookup: PriceLookupFn) -> Tuple[bool, str]:
    """Пересчет позиций -> снимок -> запись. Ошибка replay ничего не записывает."""
    logger.info(f"[SNAPSHOT] Создание снимка портфеля {portfolio_id}...")
    try:
        positions = calc_positions(store, portfolio_id)
    except LedgerError as e:
        logger.error(f"[SNAPSHOT] Портфель {portfolio_id}: replay прерван, снимок не создан. {e}")
        return False, str(e)
    except StorageError as e:
        logger.error(f"[SNAPSHOT] Портфель {portfolio_id}: ошибка чтения транзакций. {e}")
        return False, "Ошибка связи с Google Sheets."

    snapshot = build_snapshot(positions, price_lookup, portfolio_id)
    if not store.add_snapshot(snapshot):
        return False, "Не удалось записать снимок портфеля."

    msg = (f"Снимок {portfolio_id}: стоимость {utils.format_usd(snapshot.value_usd)}, "
           f"PNL {utils.format_usd(snapshot.unrealized_pnl)} ({utils.format_pct(snapshot.unrealized_pct)}).")
    logger.info(f"[SNAPSHOT] {msg}")
    return True, msg


def get_snapshot_history(
    store, portfolio_id: str, since: Optional[datetime] = None, until: Optional[datetime] = None,
    limit: int = 30
) -> List[PortfolioSnapshotData]:
    """Снимки портфеля за период, новые сверху, не больше MAX_SNAPSHOT_HISTORY."""
    snapshots = store.get_snapshots(portfolio_id)
    if since is not None:
        snapshots = [s for s in snapshots if utils.localize(s.created_at) >= utils.localize(since)]
    if until is not None:
        snapshots = [s for s in snapshots if utils.localize(s.created_at) <= utils.localize(until)]
    snapshots = sorted(snapshots, key=lambda s: utils.localize(s.created_at), reverse=True)
    return snapshots[:max(0, min(limit, MAX_SNAPSHOT_HISTORY))]


def snapshot_all_portfolios(store, price_lookup: PriceLookupFn) -> Tuple[bool, str]:
    """Один снимок на каждый портфель. Ошибка одного портфеля не останавливает остальные."""
    try:
        portfolio_ids = store.list_portfolio_ids()
    except StorageError as e:
        return False, f"Критическая ошибка чтения данных из Sheets: {e}"

    if not portfolio_ids:
        return True, "Нет портфелей для снимков."

    failed = []
    for portfolio_id in portfolio_ids:
        success, _ = create_portfolio_snapshot(store, portfolio_id, price_lookup)
        if not success:
            failed.append(portfolio_id)

    msg = f"Снимков создано: {len(portfolio_ids) - len(failed)} из {len(portfolio_ids)}."
    if failed:
        msg += f" Ошибки: {', '.join(failed)}."
    return not failed, msg


# --- Главный блок запуска ---
if __name__ == "__main__":
    from dca_tracker.price_service import PriceLookup
    from dca_tracker.sheets_service import SheetsStore

    logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    logging.getLogger('ccxt').setLevel(logging.WARNING)

    logger.info("Сервис снимков портфеля запущен в циклическом режиме.")
    main_store = SheetsStore()
    while True:
        try:
            success, message = snapshot_all_portfolios(main_store, PriceLookup())
            main_store.update_system_status("OK" if success else "ERROR", utils.now_local())
            if success:
                logger.info(f"Цикл снимков завершен. {message}")
            else:
                logger.error(f"Цикл снимков завершился с ошибкой: {message}")
        except Exception as e:
            logger.critical(f"Критическая ошибка в главном цикле снимков: {e}", exc_info=True)
            main_store.update_system_status("CRITICAL_ERROR", utils.now_local())

        logger.info(f"Следующий запуск через {config.SNAPSHOT_INTERVAL_SECONDS} секунд.")
        time.sleep(config.SNAPSHOT_INTERVAL_SECONDS)
