# dca_tracker/utils.py
import logging
from datetime import datetime, timezone, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any

from dateutil.parser import parse as parse_datetime_flexible

from dca_tracker import config

logger = logging.getLogger(__name__)


def parse_decimal(value: Any) -> Optional[Decimal]:
    """
    Безопасно преобразует значение в Decimal.
    Строки вида '12 000,50' тоже поддерживаются. float проходит через str,
    чтобы не тащить двоичный шум в вычисления.
    """
    if value is None:
        return None

    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        logger.warning(f"Неподдерживаемый тип для преобразования в Decimal: {type(value)}")
        return None
    if isinstance(value, (int, float)):
        return Decimal(str(value))

    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            cleaned_str = value.strip().replace(' ', '').replace('\u00A0', '').replace(',', '.')
            return Decimal(cleaned_str)
        except InvalidOperation:
            logger.warning(f"Не удалось преобразовать строку '{value}' в Decimal.")
            return None

    logger.warning(f"Неподдерживаемый тип для преобразования в Decimal: {type(value)}")
    return None


def get_current_timezone() -> timezone:
    """Возвращает объект timezone на основе смещения из конфига."""
    return timezone(timedelta(hours=config.TZ_OFFSET_HOURS))


def now_local() -> datetime:
    return datetime.now(timezone.utc).astimezone(get_current_timezone())


def localize(value: datetime) -> datetime:
    """
    Приводит время к зоне из конфига. Время без зоны (так оно хранится в
    таблице) считается местным.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=get_current_timezone())
    return value.astimezone(get_current_timezone())


def parse_optional_datetime(value: Optional[str]) -> Optional[datetime]:
    """Дата из аргумента команды или None, если аргумент пуст или не распознан."""
    if not value:
        return None
    try:
        return localize(parse_datetime_flexible(value))
    except ValueError:
        logger.warning(f"Не удалось распознать дату '{value}'.")
        return None


def parse_datetime_from_args(named_args: Dict[str, str]) -> datetime:
    """
    Гибко парсит дату из именованных аргументов команды.
    Если дата не найдена или некорректна, возвращает текущее время с правильным часовым поясом.
    """
    date_str = named_args.get('date')
    target_timezone = get_current_timezone()

    if date_str:
        try:
            dt_obj = parse_datetime_flexible(date_str)
            return dt_obj.replace(tzinfo=target_timezone)
        except ValueError:
            logger.warning(
                f"Не удалось распознать формат даты '{date_str}'. Используется текущее время.")

    return datetime.now(target_timezone)


# --- Форматирование для вывода (Decimal -> str только здесь) ---

def format_number(value: Any, precision_str: str = "0.01", add_plus_sign: bool = False, currency_symbol: str = "") -> str:
    """Форматирует число в строку с заданной точностью и валютным символом."""
    try:
        val = Decimal(str(value))
        decimals = abs(Decimal(precision_str).as_tuple().exponent)
        formatted_str = f"{val:,.{decimals}f}"
        if add_plus_sign and val > 0:
            formatted_str = f"+{formatted_str}"
        if currency_symbol:
            formatted_str = f"{currency_symbol}{formatted_str}"
        return formatted_str
    except (InvalidOperation, TypeError, ValueError):
        return "-"


def format_usd(value: Any) -> str:
    return format_number(value, config.USD_DISPLAY_PRECISION, currency_symbol="$")


def format_price(value: Any) -> str:
    """Точность зависит от порядка цены: от $1,234.56 до $0.00001234."""
    try:
        val = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return "-"
    if val >= 1:
        return format_number(val, "0.01", currency_symbol="$")
    if val >= Decimal('0.01'):
        return format_number(val, "0.0001", currency_symbol="$")
    return format_number(val, config.PRICE_DISPLAY_PRECISION, currency_symbol="$")


def format_pct(value: Any, add_plus_sign: bool = True) -> str:
    return f"{format_number(value, config.PCT_DISPLAY_PRECISION, add_plus_sign=add_plus_sign)}%"
