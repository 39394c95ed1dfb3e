# dca_tracker/transaction_logger.py
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Tuple

from dca_tracker import ledger, utils
from dca_tracker.exceptions import LedgerError, StorageError
from dca_tracker.models import TransactionData, TransactionType
from dca_tracker.position_service import sync_positions

logger = logging.getLogger(__name__)

OPTIONAL_FIELDS = ('base_asset', 'base_qty', 'quote_asset', 'quote_qty', 'value_usd',
                   'cost_basis_usd', 'fee_asset', 'fee_qty', 'venue', 'notes')


def _upper(value: Optional[str]) -> Optional[str]:
    return value.strip().upper() if value else None


def build_transaction(
    tx_type: str, portfolio_id: str, timestamp: datetime, **kwargs: Any
) -> TransactionData:
    unknown = set(kwargs) - set(OPTIONAL_FIELDS)
    if unknown:
        raise ValueError(f"Неизвестные поля транзакции: {', '.join(sorted(unknown))}.")
    return TransactionData(
        tx_id=str(uuid.uuid4()),
        portfolio_id=portfolio_id,
        tx_type=tx_type.upper(),
        timestamp=utils.localize(timestamp),
        base_asset=_upper(kwargs.get('base_asset')),
        base_qty=kwargs.get('base_qty'),
        quote_asset=_upper(kwargs.get('quote_asset')),
        quote_qty=kwargs.get('quote_qty'),
        value_usd=kwargs.get('value_usd'),
        cost_basis_usd=kwargs.get('cost_basis_usd'),
        fee_asset=_upper(kwargs.get('fee_asset')),
        fee_qty=kwargs.get('fee_qty'),
        venue=kwargs.get('venue').lower() if kwargs.get('venue') else None,
        notes=kwargs.get('notes'),
    )


def validate_transaction(tx: TransactionData) -> Optional[str]:
    """Проверка полей до записи. Возвращает текст ошибки или None."""
    if tx.tx_type not in {t.value for t in TransactionType}:
        return f"Неизвестный тип транзакции '{tx.tx_type}'."

    missing = [f for f in ledger.REQUIRED_FIELDS[tx.tx_type] if getattr(tx, f) in (None, '')]
    if missing:
        return f"Для {tx.tx_type} не заполнены поля: {', '.join(missing)}."

    for field_name in ('base_qty', 'quote_qty', 'fee_qty'):
        value = getattr(tx, field_name)
        if value is not None and value <= Decimal('0'):
            return f"Поле {field_name} должно быть больше 0."
    for field_name in ('value_usd', 'cost_basis_usd'):
        value = getattr(tx, field_name)
        if value is not None and value < Decimal('0'):
            return f"Поле {field_name} не может быть отрицательным."

    if tx.value_usd is not None and tx.tx_type != TransactionType.SWAP.value:
        return "value_usd допустим только для SWAP."
    if tx.cost_basis_usd is not None and tx.tx_type != TransactionType.DEPOSIT.value:
        return "cost_basis_usd допустим только для DEPOSIT."
    if bool(tx.fee_asset) != bool(tx.fee_qty):
        return "Комиссия задается парой fee_asset и fee_qty."
    return None


def log_transaction(
    store, tx_type: str, portfolio_id: str, timestamp: datetime, **kwargs: Any
) -> Tuple[bool, str]:
    """
    Проверяет транзакцию, проигрывает журнал вместе с ней и только затем
    записывает. Транзакция, ведущая к отрицательному балансу, не записывается.
    """
    try:
        tx = build_transaction(tx_type, portfolio_id, timestamp, **kwargs)
    except ValueError as e:
        return False, str(e)
    logger.info(f"[LOGGER] TxID: {tx.tx_id}. Начало обработки: {tx.tx_type} {tx.base_qty or tx.fee_qty} "
                f"{tx.base_asset or tx.fee_asset} ({portfolio_id})")

    error = validate_transaction(tx)
    if error:
        logger.warning(f"[LOGGER] TxID: {tx.tx_id}. Отклонено: {error}")
        return False, error

    try:
        existing = store.get_transactions(portfolio_id)
    except StorageError as e:
        logger.error(f"[LOGGER] Не удалось загрузить транзакции из Sheets: {e}")
        return False, "Ошибка связи с Google Sheets."

    try:
        ledger.replay(existing + [tx])
    except LedgerError as e:
        logger.warning(f"[LOGGER] TxID: {tx.tx_id}. Отклонено движком учета: {e}")
        return False, str(e)

    if not store.add_transaction(tx):
        return False, "Ошибка записи транзакции в Transactions."

    synced, sync_msg = sync_positions(store, portfolio_id)
    if not synced:
        logger.critical(f"[LOGGER] Транзакция {tx.tx_id} записана, но позиции НЕ обновлены: {sync_msg}")

    logger.info(f"[LOGGER] TxID: {tx.tx_id}. Транзакция успешно залогирована.")
    return True, tx.tx_id
