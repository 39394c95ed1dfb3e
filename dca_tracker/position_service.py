# dca_tracker/position_service.py
"""
Адаптер хранилища позиций: загружает транзакции портфеля, проигрывает их
через ledger.replay и, при успехе, обновляет производное зеркало позиций.
"""
import logging
from decimal import Decimal
from typing import Dict, List, Tuple

from dca_tracker import ledger
from dca_tracker.exceptions import CapitalUnavailable, InsufficientBalance, LedgerError, StorageError
from dca_tracker.models import Position

logger = logging.getLogger(__name__)


def calc_positions(store, portfolio_id: str) -> Dict[str, Position]:
    """
    Полный пересчет позиций портфеля. InsufficientBalance и StorageError
    пробрасываются: вызывающий код не должен ничего сохранять.
    """
    transactions = store.get_transactions(portfolio_id)
    logger.debug(f"[POSITIONS] Портфель {portfolio_id}: загружено {len(transactions)} транзакций.")
    return ledger.replay(transactions)


def sync_positions(store, portfolio_id: str) -> Tuple[bool, str]:
    """
    Пересчитывает позиции и перезаписывает лист Open_Positions целиком.
    Ничего не пишет, если replay завершился ошибкой.
    """
    logger.info(f"[POSITIONS] Пересчет позиций портфеля {portfolio_id}...")
    try:
        positions = calc_positions(store, portfolio_id)
    except InsufficientBalance as e:
        logger.error(f"[POSITIONS] Портфель {portfolio_id}: история транзакций противоречива. {e}")
        return False, str(e)
    except LedgerError as e:
        logger.error(f"[POSITIONS] Портфель {portfolio_id}: некорректная транзакция. {e}")
        return False, str(e)
    except StorageError as e:
        logger.error(f"[POSITIONS] Портфель {portfolio_id}: ошибка чтения транзакций. {e}")
        return False, "Ошибка связи с Google Sheets."

    active = ledger.active_positions(positions)
    if not store.replace_open_positions(portfolio_id, active):
        return False, "Ошибка записи позиций."

    msg = f"Портфель {portfolio_id}: обновлено {len(active)} позиций."
    logger.info(f"[POSITIONS] {msg}")
    return True, msg


def get_active_positions(store, portfolio_id: str) -> List[Position]:
    return ledger.active_positions(calc_positions(store, portfolio_id))


def get_stablecoin_capital(store, portfolio_id: str) -> Decimal:
    """
    Капитал в стейблкоинах для планировщика зон.
    Ошибка хранилища -> CapitalUnavailable; InsufficientBalance остается фатальной.
    """
    try:
        positions = calc_positions(store, portfolio_id)
    except StorageError as e:
        raise CapitalUnavailable(f"Портфель {portfolio_id}: капитал недоступен. {e}") from e
    return ledger.stablecoin_capital(positions)


def aggregate_positions(store) -> List[Position]:
    """
    WAC по всем портфелям: количества и себестоимость суммируются по активу,
    средняя цена пересчитывается из сумм. Ошибка replay любого портфеля
    пробрасывается.
    """
    totals: Dict[str, Position] = {}
    for portfolio_id in store.list_portfolio_ids():
        for pos in get_active_positions(store, portfolio_id):
            total = totals.setdefault(pos.asset, Position(asset=pos.asset))
            total.qty += pos.qty
            total.cost_usd_total += pos.cost_usd_total
    for total in totals.values():
        total.avg_cost_usd = total.cost_usd_total / total.qty if total.qty > 0 else Decimal('0')
    return [totals[asset] for asset in sorted(totals)]
