# dca_tracker/ledger.py
"""
Движок учета по средневзвешенной себестоимости (WAC).

Журнал транзакций проигрывается по возрастанию времени в карту позиций.
Чистая функция: без ввода-вывода и без скрытого состояния между вызовами.
"""
import copy
import logging
from decimal import Decimal
from typing import Dict, Iterable, List

from dca_tracker import config, utils
from dca_tracker.exceptions import InsufficientBalance, InvalidTransaction
from dca_tracker.models import Position, TransactionData, TransactionType

logger = logging.getLogger(__name__)

ZERO = Decimal('0')
ONE = Decimal('1')


# --- Вспомогательные функции, работающие с позициями ---

def _dec(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _get_or_create(positions: Dict[str, Position], asset: str) -> Position:
    asset = asset.upper()
    if asset not in positions:
        positions[asset] = Position(asset=asset)
    return positions[asset]


def _recompute_avg(pos: Position) -> None:
    pos.avg_cost_usd = ZERO if pos.qty.is_zero() else pos.cost_usd_total / pos.qty


def _acquire(pos: Position, qty: Decimal, cost_usd: Decimal) -> None:
    pos.qty += qty
    pos.cost_usd_total += cost_usd
    _recompute_avg(pos)


def _dispose(pos: Position, qty: Decimal) -> None:
    """Списывает количество по средней цене ДО списания."""
    if qty > pos.qty:
        raise InsufficientBalance(pos.asset, qty, pos.qty)
    avg_before = ZERO if pos.qty.is_zero() else pos.cost_usd_total / pos.qty
    pos.qty -= qty
    pos.cost_usd_total -= avg_before * qty
    if pos.qty.is_zero():
        pos.cost_usd_total = ZERO
    _recompute_avg(pos)


def _apply_fee(positions: Dict[str, Position], tx: TransactionData, zero_if_short: bool = False) -> None:
    """
    Комиссия уменьшает количество и пропорционально списывает себестоимость.
    zero_if_short: для свопа при нехватке баланса позиция обнуляется.
    """
    if not tx.fee_asset or not tx.fee_qty:
        return
    fee_qty = _dec(tx.fee_qty)
    pos = _get_or_create(positions, tx.fee_asset)

    if fee_qty > pos.qty:
        if zero_if_short:
            logger.warning(
                f"[LEDGER] TxID: {tx.tx_id}. Комиссия {fee_qty} {pos.asset} больше баланса "
                f"{pos.qty}, позиция обнулена. Проверьте историю транзакций.")
            pos.qty = ZERO
            pos.cost_usd_total = ZERO
            pos.avg_cost_usd = ZERO
            return
        raise InsufficientBalance(pos.asset, fee_qty, pos.qty)

    pos.qty -= fee_qty
    proportion = fee_qty / (pos.qty + fee_qty)
    pos.cost_usd_total = pos.cost_usd_total * (ONE - proportion)
    _recompute_avg(pos)


# --- Обработчики по типам транзакций ---

def _handle_buy(positions: Dict[str, Position], tx: TransactionData) -> None:
    pos = _get_or_create(positions, tx.base_asset)
    _acquire(pos, _dec(tx.base_qty), _dec(tx.quote_qty))
    _apply_fee(positions, tx)


def _handle_sell(positions: Dict[str, Position], tx: TransactionData) -> None:
    pos = _get_or_create(positions, tx.base_asset)
    _dispose(pos, _dec(tx.base_qty))
    _apply_fee(positions, tx)


def _handle_swap(positions: Dict[str, Position], tx: TransactionData) -> None:
    """
    Своп = атомарная продажа base + покупка quote.
    Себестоимость quote равна value_usd; без него quote_qty считается в USD
    (своп в стейблкоин).
    """
    base_pos = _get_or_create(positions, tx.base_asset)
    _dispose(base_pos, _dec(tx.base_qty))

    buy_qty = _dec(tx.quote_qty)
    swap_value_usd = _dec(tx.value_usd) if tx.value_usd is not None else buy_qty
    quote_pos = _get_or_create(positions, tx.quote_asset)
    _acquire(quote_pos, buy_qty, swap_value_usd)

    _apply_fee(positions, tx, zero_if_short=True)


def _handle_deposit(positions: Dict[str, Position], tx: TransactionData) -> None:
    # Без cost_basis_usd депозит добавляет количество с нулевой стоимостью
    # и занижает среднюю цену. Это допустимо.
    pos = _get_or_create(positions, tx.base_asset)
    cost = _dec(tx.cost_basis_usd) if tx.cost_basis_usd is not None else ZERO
    _acquire(pos, _dec(tx.base_qty), cost)
    _apply_fee(positions, tx)


def _handle_withdraw(positions: Dict[str, Position], tx: TransactionData) -> None:
    pos = _get_or_create(positions, tx.base_asset)
    _dispose(pos, _dec(tx.base_qty))
    _apply_fee(positions, tx)


def _handle_fee(positions: Dict[str, Position], tx: TransactionData) -> None:
    _apply_fee(positions, tx)


REQUIRED_FIELDS = {
    TransactionType.BUY.value: ('base_asset', 'base_qty', 'quote_qty'),
    TransactionType.SELL.value: ('base_asset', 'base_qty'),
    TransactionType.SWAP.value: ('base_asset', 'base_qty', 'quote_asset', 'quote_qty'),
    TransactionType.DEPOSIT.value: ('base_asset', 'base_qty'),
    TransactionType.WITHDRAW.value: ('base_asset', 'base_qty'),
    TransactionType.FEE.value: ('fee_asset', 'fee_qty'),
}

HANDLERS = {
    TransactionType.BUY.value: _handle_buy,
    TransactionType.SELL.value: _handle_sell,
    TransactionType.SWAP.value: _handle_swap,
    TransactionType.DEPOSIT.value: _handle_deposit,
    TransactionType.WITHDRAW.value: _handle_withdraw,
    TransactionType.FEE.value: _handle_fee,
}


def apply_transaction(positions: Dict[str, Position], tx: TransactionData) -> Dict[str, Position]:
    """
    Один шаг свертки: возвращает НОВУЮ карту позиций, исходная не меняется.
    """
    tx_type = str(getattr(tx.tx_type, 'value', tx.tx_type)).upper()
    handler = HANDLERS.get(tx_type)
    if handler is None:
        raise InvalidTransaction(f"Неизвестный тип транзакции '{tx.tx_type}' (TxID: {tx.tx_id}).")
    missing = [f for f in REQUIRED_FIELDS[tx_type] if getattr(tx, f) in (None, '')]
    if missing:
        raise InvalidTransaction(f"{tx_type} {tx.tx_id}: не заполнены поля {', '.join(missing)}.")
    updated = copy.deepcopy(positions)
    handler(updated, tx)
    return updated


def sort_transactions(transactions: Iterable[TransactionData]) -> List[TransactionData]:
    """
    По возрастанию времени; при равенстве сохраняется порядок на входе.
    Время из таблицы (без зоны) и время из бота (с зоной) сравнимы.
    """
    return sorted(transactions, key=lambda t: utils.localize(t.timestamp))


def replay(transactions: Iterable[TransactionData]) -> Dict[str, Position]:
    """
    Проигрывает журнал транзакций в карту позиций {asset: Position}.
    При InsufficientBalance прерывается целиком: частичный результат не возвращается.
    """
    positions: Dict[str, Position] = {}
    for tx in sort_transactions(transactions):
        positions = apply_transaction(positions, tx)
    return positions


def active_positions(positions: Dict[str, Position]) -> List[Position]:
    """Позиции с положительным количеством, отсортированные по активу."""
    return [positions[a] for a in sorted(positions) if positions[a].qty > 0]


def stablecoin_capital(positions: Dict[str, Position]) -> Decimal:
    """Сумма количеств стейблкоинов (капитал для зон DCA)."""
    return sum(
        (p.qty for a, p in positions.items() if a.upper() in config.STABLECOINS and p.qty > 0),
        ZERO)
