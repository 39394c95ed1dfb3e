# dca_tracker/bot_runner.py
import logging
import os

from telegram.ext import Application, CommandHandler

from dca_tracker import config
from dca_tracker.sheets_service import SheetsStore
from dca_tracker.telegram_handlers import (
    add_band_command,
    add_zone_command,
    alerts_command,
    bands_command,
    buy_command,
    check_bands_command,
    del_band_command,
    del_zone_command,
    deposit_command,
    entries_command,
    exec_band_command,
    fee_command,
    fill_zone_command,
    help_command,
    history_command,
    positions_command,
    read_alerts_command,
    sell_command,
    snapshot_command,
    snapshots_command,
    start_command,
    swap_command,
    wac_all_command,
    withdraw_command,
    zones_command,
)

COMMANDS = {
    "start": start_command,
    "help": help_command,
    "buy": buy_command,
    "sell": sell_command,
    "swap": swap_command,
    "deposit": deposit_command,
    "withdraw": withdraw_command,
    "fee": fee_command,
    "positions": positions_command,
    "wac_all": wac_all_command,
    "snapshot": snapshot_command,
    "snapshots": snapshots_command,
    "history": history_command,
    "zones": zones_command,
    "add_zone": add_zone_command,
    "fill_zone": fill_zone_command,
    "del_zone": del_zone_command,
    "entries": entries_command,
    "bands": bands_command,
    "check_bands": check_bands_command,
    "add_band": add_band_command,
    "exec_band": exec_band_command,
    "del_band": del_band_command,
    "alerts": alerts_command,
    "read_alerts": read_alerts_command,
}

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    os.makedirs(config.LOGS_DIR, exist_ok=True)
    log_file_path = os.path.join(config.LOGS_DIR, config.BOT_LOG_FILE)
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=config.LOG_LEVEL,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
            handlers=[
                logging.FileHandler(log_file_path, encoding='utf-8'),
                logging.StreamHandler()
            ]
        )

    # Уменьшение "болтливости" библиотечных логгеров
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("telegram.ext").setLevel(logging.INFO)
    logging.getLogger('ccxt').setLevel(logging.WARNING)


def build_application(store: SheetsStore) -> Application:
    application = Application.builder().token(config.TELEGRAM_TOKEN).build()
    application.bot_data['store'] = store
    for name, handler in COMMANDS.items():
        application.add_handler(CommandHandler(name, handler))
    return application


def main() -> None:
    setup_logging()
    logger.info("Запуск Telegram бота...")

    if not config.TELEGRAM_TOKEN:
        logger.critical("TELEGRAM_TOKEN не найден. Бот не может быть запущен.")
        return

    application = build_application(SheetsStore())
    logger.info("Бот запущен и готов принимать команды.")
    application.run_polling()
    logger.info("Бот остановлен.")


if __name__ == '__main__':
    main()
