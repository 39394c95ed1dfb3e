# dca_tracker/price_service.py
import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

import ccxt

from dca_tracker import config
from dca_tracker.exceptions import PriceUnavailable

logger = logging.getLogger(__name__)


def _market_symbol(asset: str) -> str:
    return f"{asset.upper()}/{config.PRICE_QUOTE_ASSET}"


def _ticker_price(tickers: Dict[str, dict], asset: str) -> Decimal:
    ticker = tickers.get(_market_symbol(asset))
    if not ticker or ticker.get('last') is None:
        raise PriceUnavailable(f"Нет цены для {asset}.")
    return Decimal(str(ticker['last']))


def _fetch_tickers_one_by_one(exchange, assets: List[str], exchange_id: str) -> Dict[str, dict]:
    """Запасной путь: пара, которой нет на бирже, теряется одна, а не вся пачка."""
    tickers: Dict[str, dict] = {}
    for asset in assets:
        symbol = _market_symbol(asset)
        try:
            tickers[symbol] = exchange.fetch_ticker(symbol)
        except ccxt.BadSymbol:
            logger.warning(f"Пара {symbol} не торгуется на {exchange_id}.")
        except ccxt.BaseError as e:
            logger.error(f"Не удалось получить цену {symbol} с биржи {exchange_id}: {e}")
    return tickers


def fetch_prices(assets: Iterable[str], exchange_id: Optional[str] = None) -> Dict[str, Decimal]:
    """
    Загружает последние цены в USD для активов одним запросом fetch_tickers.
    Стейблкоины всегда стоят 1. Если биржа отклоняет пачку из-за неизвестной
    пары, цены запрашиваются по одной. Ошибки биржи не пробрасываются:
    актив просто отсутствует в результате.
    """
    assets = sorted({a.upper() for a in assets if a})
    prices: Dict[str, Decimal] = {a: Decimal('1') for a in assets if a in config.STABLECOINS}
    to_fetch = [a for a in assets if a not in prices]
    if not to_fetch:
        return prices

    exchange_id = (exchange_id or config.PRICE_EXCHANGE_ID).lower()
    exchange_class = getattr(ccxt, exchange_id, None)
    if not exchange_class:
        logger.warning(f"Биржа {exchange_id} не найдена в CCXT.")
        return prices

    exchange = exchange_class()
    try:
        tickers = exchange.fetch_tickers([_market_symbol(a) for a in to_fetch])
    except ccxt.BadSymbol as e:
        logger.warning(f"Биржа {exchange_id} отклонила пакетный запрос ({e}). Цены запрашиваются по одной.")
        tickers = _fetch_tickers_one_by_one(exchange, to_fetch, exchange_id)
    except ccxt.BaseError as e:
        logger.error(f"Не удалось получить цены с биржи {exchange_id}: {e}")
        return prices

    for asset in to_fetch:
        try:
            prices[asset] = _ticker_price(tickers, asset)
        except PriceUnavailable as e:
            logger.warning(f"{e} Биржа: {exchange_id}.")
    return prices


class PriceLookup:
    """
    price(symbol) -> Decimal | None. Кэширует цены на время одного цикла,
    чтобы снимок и планировщик не дергали биржу по каждому активу.
    """

    def __init__(self, exchange_id: Optional[str] = None, preloaded: Optional[Dict[str, Decimal]] = None):
        self.exchange_id = exchange_id
        self._cache: Dict[str, Decimal] = {k.upper(): v for k, v in (preloaded or {}).items()}
        self._missing: set = set()

    def prefetch(self, assets: Iterable[str]) -> None:
        wanted = [a.upper() for a in assets if a and a.upper() not in self._cache]
        if not wanted:
            return
        fetched = fetch_prices(wanted, self.exchange_id)
        self._cache.update(fetched)
        self._missing.update(a for a in wanted if a not in fetched)

    def __call__(self, symbol: str) -> Optional[Decimal]:
        symbol = symbol.upper()
        if symbol not in self._cache and symbol not in self._missing:
            self.prefetch([symbol])
        return self._cache.get(symbol)
