# dca_tracker/exceptions.py
from decimal import Decimal


class DcaTrackerError(Exception):
    """Базовое исключение проекта."""


# --- Ошибки движка учета ---
class LedgerError(DcaTrackerError):
    pass


class InsufficientBalance(LedgerError):
    """Продажа/вывод/своп на количество больше, чем есть в позиции."""

    def __init__(self, asset: str, required: Decimal, available: Decimal):
        self.asset = asset
        self.required = required
        self.available = available
        super().__init__(
            f"Недостаточно {asset}. Нужно: {required}, доступно: {available}.")


class InvalidTransaction(LedgerError):
    pass


# --- Ошибки валидации зон (только при записи, не внутри планировщика) ---
class ZoneValidationError(DcaTrackerError):
    pass


class InvalidZoneRange(ZoneValidationError):
    def __init__(self, price_min: Decimal, price_max: Decimal):
        self.price_min = price_min
        self.price_max = price_max
        super().__init__(
            f"priceMin ({price_min}) должен быть меньше priceMax ({price_max}).")


class AllocationOverflow(ZoneValidationError):
    def __init__(self, existing_total: Decimal, new_percentual: Decimal):
        self.existing_total = existing_total
        self.new_percentual = new_percentual
        super().__init__(
            f"Сумма процентов превышает 100% (текущая: {existing_total:.1f}%, "
            f"новая: {new_percentual:.1f}%).")


class DuplicateZoneOrder(ZoneValidationError):
    pass


class BuyBandValidationError(DcaTrackerError):
    pass


# --- Нефатальные ошибки внешних зависимостей ---
class PriceUnavailable(DcaTrackerError):
    pass


class CapitalUnavailable(DcaTrackerError):
    pass


class NotificationDeliveryFailed(DcaTrackerError):
    pass


class StorageError(DcaTrackerError):
    pass
