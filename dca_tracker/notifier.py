# dca_tracker/notifier.py
"""
Канал уведомлений: notify(message) -> delivered. Исключения Telegram
наружу не выходят, вызывающий код получает только флаг доставки.
"""
import logging
from typing import Awaitable, Callable, List, Optional

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import TelegramError

from dca_tracker import config

logger = logging.getLogger(__name__)

# Лимит Telegram на длину одного сообщения
MAX_MESSAGE_LENGTH = 4096

_bot_instance: Optional[Bot] = None


def get_bot_instance() -> Optional[Bot]:
    """Бот для фоновых сервисов, работающих вне Application."""
    global _bot_instance
    if _bot_instance is None:
        if not config.TELEGRAM_TOKEN:
            logger.error("Notifier: TELEGRAM_TOKEN не настроен, уведомления отключены.")
            return None
        _bot_instance = Bot(token=config.TELEGRAM_TOKEN)
    return _bot_instance


def split_message(message: str, limit: int = MAX_MESSAGE_LENGTH) -> List[str]:
    """Режет длинный текст по строкам, чтобы не разрывать HTML-теги посередине строки."""
    chunks, current = [], ""
    for line in message.splitlines(keepends=True):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        if len(current) + len(line) > limit:
            chunks.append(current)
            current = ""
        current += line
    if current:
        chunks.append(current)
    return chunks


async def send_telegram_alert(message: str, bot_instance: Optional[Bot] = None) -> bool:
    """
    Отправляет HTML-сообщение в TELEGRAM_CHAT_ID.

    Returns:
        bool: True, если доставлены все части сообщения.
    """
    bot = bot_instance or get_bot_instance()
    if not bot:
        return False
    if not config.TELEGRAM_CHAT_ID:
        logger.error("Notifier: TELEGRAM_CHAT_ID не настроен. Уведомление не отправлено.")
        return False

    try:
        for chunk in split_message(message):
            await bot.send_message(chat_id=config.TELEGRAM_CHAT_ID, text=chunk, parse_mode=ParseMode.HTML)
    except TelegramError as e:
        logger.error(f"Notifier: ошибка Telegram API (чат {config.TELEGRAM_CHAT_ID}): {e}")
        return False

    logger.info(f"Notifier: уведомление доставлено в чат {config.TELEGRAM_CHAT_ID}: \"{message[:50]}...\"")
    return True


def make_notifier(bot_instance: Optional[Bot] = None) -> Callable[[str], Awaitable[bool]]:
    """notify(message) с привязанным ботом, например application.bot."""
    async def notify(message: str) -> bool:
        return await send_telegram_alert(message, bot_instance=bot_instance)
    return notify
