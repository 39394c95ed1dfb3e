# dca_tracker/telegram_parser.py
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from dca_tracker.models import TransactionType

logger = logging.getLogger(__name__)

# Позиционные аргументы и их поля для каждой команды транзакции
TX_POSITIONAL_FIELDS: Dict[str, Tuple[str, ...]] = {
    TransactionType.BUY.value: ('base_asset', 'base_qty', 'quote_qty'),
    TransactionType.SELL.value: ('base_asset', 'base_qty', 'quote_qty'),
    TransactionType.SWAP.value: ('base_asset', 'base_qty', 'quote_asset', 'quote_qty'),
    TransactionType.DEPOSIT.value: ('base_asset', 'base_qty'),
    TransactionType.WITHDRAW.value: ('base_asset', 'base_qty'),
    TransactionType.FEE.value: ('fee_asset', 'fee_qty'),
}

TX_USAGE: Dict[str, str] = {
    TransactionType.BUY.value: "/buy ASSET QTY COST_USD [fee:QTY fee_asset:ASSET quote:ASSET]",
    TransactionType.SELL.value: "/sell ASSET QTY [PROCEEDS_USD] [fee:QTY fee_asset:ASSET]",
    TransactionType.SWAP.value: "/swap FROM QTY TO QTY [value_usd:USD fee:QTY fee_asset:ASSET]",
    TransactionType.DEPOSIT.value: "/deposit ASSET QTY [cost:USD]",
    TransactionType.WITHDRAW.value: "/withdraw ASSET QTY [fee:QTY fee_asset:ASSET]",
    TransactionType.FEE.value: "/fee ASSET QTY",
}

DECIMAL_FIELDS = {'base_qty', 'quote_qty', 'fee_qty', 'value_usd', 'cost_basis_usd'}


def parse_command_args_advanced(args: List[str], num_positional_max: int) -> Tuple[List[str], Dict[str, str]]:
    """
    Продвинутый парсер аргументов команды.
    Разделяет аргументы на позиционные и именованные (ключ:значение).
    """
    positional_args = []
    named_args_dict = {}
    arg_idx = 0
    key_regex = r"^([a-zA-Z_а-яА-Я][a-zA-Z0-9_а-яА-Я]*):(.*)$"

    while arg_idx < len(args):
        current_token = args[arg_idx]
        if re.match(key_regex, current_token) or len(positional_args) >= num_positional_max:
            break
        positional_args.append(current_token)
        arg_idx += 1

    # Значение ключа может занимать несколько токенов (notes:купил на просадке)
    current_key = None
    value_buffer = []
    while arg_idx < len(args):
        token = args[arg_idx]
        key_match = re.match(key_regex, token)
        if key_match:
            if current_key:
                named_args_dict[current_key] = " ".join(value_buffer).strip()
            current_key = key_match.group(1).lower()
            value_part = key_match.group(2).strip()
            value_buffer = []
            if value_part:
                if len(value_part) > 1 and value_part[0] == value_part[-1] and value_part[0] in '"\'':
                    value_buffer.append(value_part[1:-1])
                else:
                    value_buffer.append(value_part)
        elif current_key:
            value_buffer.append(token)
        arg_idx += 1

    if current_key:
        named_args_dict[current_key] = " ".join(value_buffer).strip()

    return positional_args, named_args_dict


def merge_amount_parts(args: List[str]) -> List[str]:
    """
    Объединяет части суммы, разделенные пробелом.
    Например, ['USDT', '12', '000,50'] -> ['USDT', '12 000,50'].
    """
    merged_args = []
    skip_next = False
    for i, arg in enumerate(args):
        if skip_next:
            skip_next = False
            continue
        if i + 1 < len(args) and arg.isdigit() and ',' in args[i + 1]:
            merged_args.append(f"{arg} {args[i + 1]}")
            skip_next = True
        else:
            merged_args.append(arg)
    return merged_args


def normalize_amount_string(amount_str: Optional[str]) -> Optional[Decimal]:
    """'12 000,50' -> Decimal('12000.50'). Некорректная строка -> None."""
    if not amount_str:
        return None
    try:
        cleaned = amount_str.replace(' ', '').replace('\u00A0', '').replace(',', '.')
        return Decimal(cleaned)
    except InvalidOperation:
        logger.warning(f"Не удалось преобразовать строку '{amount_str}' в Decimal.")
        return None


def tx_kwargs_from_args(tx_type: str, pos_args: List[str], named_args: Dict[str, str]) -> Dict[str, Any]:
    """
    Превращает аргументы команды в именованные поля для log_transaction.
    ValueError с подсказкой по использованию, если аргументов не хватает.
    """
    tx_type = tx_type.upper()
    fields = TX_POSITIONAL_FIELDS[tx_type]
    required = len(fields) - 1 if tx_type == TransactionType.SELL.value else len(fields)
    if len(pos_args) < required:
        raise ValueError(f"Использование: <code>{TX_USAGE[tx_type]}</code>")

    kwargs: Dict[str, Any] = {}
    for field_name, raw in zip(fields, pos_args):
        if field_name in DECIMAL_FIELDS:
            value = normalize_amount_string(raw)
            if value is None:
                raise ValueError(f"Некорректное число '{raw}'.")
            kwargs[field_name] = value
        else:
            kwargs[field_name] = raw.upper()

    if tx_type != TransactionType.FEE.value and named_args.get('fee'):
        kwargs['fee_qty'] = normalize_amount_string(named_args['fee'])
        if kwargs['fee_qty'] is None:
            raise ValueError(f"Некорректная комиссия '{named_args['fee']}'.")
        kwargs['fee_asset'] = (named_args.get('fee_asset') or kwargs.get('base_asset', '')).upper()
    if tx_type == TransactionType.SWAP.value and named_args.get('value_usd'):
        kwargs['value_usd'] = normalize_amount_string(named_args['value_usd'])
    if tx_type == TransactionType.DEPOSIT.value and named_args.get('cost'):
        kwargs['cost_basis_usd'] = normalize_amount_string(named_args['cost'])
    if tx_type in (TransactionType.BUY.value, TransactionType.SELL.value) and named_args.get('quote'):
        kwargs['quote_asset'] = named_args['quote'].upper()
    if named_args.get('venue') or named_args.get('exch'):
        kwargs['venue'] = named_args.get('venue') or named_args.get('exch')
    if named_args.get('notes'):
        kwargs['notes'] = named_args['notes']
    return kwargs
