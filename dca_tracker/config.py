# dca_tracker/config.py

import logging
import os
from dotenv import load_dotenv
from pathlib import Path

# Явное указание пути к .env файлу в корне проекта,
# независимо от того, откуда запускается скрипт.
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(dotenv_path=env_path)


# --- Основные настройки ---
# Смещение временной зоны в часах (например, 3 для UTC+3)
TZ_OFFSET_HOURS = int(os.getenv('TZ_OFFSET_HOURS', '0'))

# Портфель по умолчанию для команд бота
DEFAULT_PORTFOLIO_ID = os.getenv('DEFAULT_PORTFOLIO_ID', 'main')

# --- Настройки Telegram ---
TELEGRAM_TOKEN = os.getenv('TELEGRAM_TOKEN', '')
TELEGRAM_CHAT_ID = os.getenv('TELEGRAM_CHAT_ID', '')
# Для нескольких администраторов через запятую. Если пусто, используется TELEGRAM_CHAT_ID.
TELEGRAM_ADMIN_IDS_STR = os.getenv('TELEGRAM_ADMIN_IDS_STR', TELEGRAM_CHAT_ID)

# --- Настройки Google Sheets ---
SPREADSHEET_ID = os.getenv('SPREADSHEET_ID', '')
GOOGLE_CREDS_JSON_PATH = os.getenv(
    'GOOGLE_CREDS_JSON_PATH', 'credentials.json')

# --- Имена листов в Google Sheets ---
TRANSACTIONS_SHEET_NAME = os.getenv('TRANSACTIONS_SHEET_NAME', 'Transactions')
OPEN_POSITIONS_SHEET_NAME = os.getenv(
    'OPEN_POSITIONS_SHEET_NAME', 'Open_Positions')
SNAPSHOTS_SHEET_NAME = os.getenv(
    'SNAPSHOTS_SHEET_NAME', 'Portfolio_Snapshots')
DCA_ZONES_SHEET_NAME = os.getenv('DCA_ZONES_SHEET_NAME', 'Dca_Zones')
BUY_BANDS_SHEET_NAME = os.getenv('BUY_BANDS_SHEET_NAME', 'Buy_Bands')
BUY_BAND_ALERTS_SHEET_NAME = os.getenv(
    'BUY_BAND_ALERTS_SHEET_NAME', 'Buy_Band_Alerts')
SYSTEM_STATUS_SHEET_NAME = os.getenv(
    'SYSTEM_STATUS_SHEET_NAME', 'System_Status')
STATUS_LAST_RUN_CELL = os.getenv('STATUS_LAST_RUN_CELL', 'A1')
STATUS_CELL = os.getenv('STATUS_CELL', 'B1')

# --- Настройки точности для Decimal ---
USD_DISPLAY_PRECISION = os.getenv('USD_DISPLAY_PRECISION', '0.01')
QTY_DISPLAY_PRECISION = os.getenv('QTY_DISPLAY_PRECISION', '0.00000001')
PRICE_DISPLAY_PRECISION = os.getenv('PRICE_DISPLAY_PRECISION', '0.00000001')
PCT_DISPLAY_PRECISION = os.getenv('PCT_DISPLAY_PRECISION', '0.01')

# --- Стейблкоины: капитал для зон DCA и цена = 1 USD ---
STABLECOINS = [s.strip().upper() for s in os.getenv(
    'STABLECOINS', 'USD,USDT,USDC').split(',') if s.strip()]

# --- Источник цен (ccxt) ---
PRICE_EXCHANGE_ID = os.getenv('PRICE_EXCHANGE_ID', 'binance').lower()
PRICE_QUOTE_ASSET = os.getenv('PRICE_QUOTE_ASSET', 'USDT').upper()

# --- Алерты buy bands ---
# Окно антидубликата: не более одного алерта на band за этот период
ALERT_DEDUP_HOURS = int(os.getenv('ALERT_DEDUP_HOURS', '4'))
BUY_BAND_CHECK_INTERVAL_SECONDS = int(
    os.getenv('BUY_BAND_CHECK_INTERVAL_SECONDS', '300'))

# --- Снимки портфеля ---
SNAPSHOT_INTERVAL_SECONDS = int(
    os.getenv('SNAPSHOT_INTERVAL_SECONDS', str(24 * 60 * 60)))

# --- Точки входа внутри зоны ---
MAX_ENTRY_POINTS = int(os.getenv('MAX_ENTRY_POINTS', '10'))

# --- Настройки логирования ---
LOG_LEVEL_STR = os.getenv('LOG_LEVEL', 'INFO').upper()
LOG_LEVEL = getattr(logging, LOG_LEVEL_STR, logging.INFO)
LOGS_DIR = os.getenv('LOGS_DIR', 'logs')
BOT_LOG_FILE = os.getenv('BOT_LOG_FILE', 'bot.log')
