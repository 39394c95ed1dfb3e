from telegram.error import TelegramError

from dca_tracker import config, notifier


class FakeBot:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent = []

    async def send_message(self, chat_id, text, parse_mode=None):
        if self.fail:
            raise TelegramError("chat not found")
        self.sent.append((chat_id, text))


def test_split_message_keeps_lines_whole():
    chunks = notifier.split_message("aaaa\nbbbb\ncccc\n", limit=10)
    assert chunks == ["aaaa\nbbbb\n", "cccc\n"]
    assert all(len(c) <= 10 for c in chunks)


def test_split_message_cuts_overlong_line():
    assert notifier.split_message("x" * 25, limit=10) == ["x" * 10, "x" * 10, "x" * 5]


async def test_send_delivers_to_configured_chat(monkeypatch):
    monkeypatch.setattr(config, "TELEGRAM_CHAT_ID", "42")
    bot = FakeBot()

    assert await notifier.send_telegram_alert("<b>hi</b>", bot_instance=bot) is True
    assert bot.sent == [("42", "<b>hi</b>")]


async def test_telegram_error_becomes_false(monkeypatch):
    monkeypatch.setattr(config, "TELEGRAM_CHAT_ID", "42")
    assert await notifier.send_telegram_alert("hi", bot_instance=FakeBot(fail=True)) is False


async def test_missing_chat_id_is_not_delivered(monkeypatch):
    monkeypatch.setattr(config, "TELEGRAM_CHAT_ID", "")
    bot = FakeBot()
    assert await notifier.send_telegram_alert("hi", bot_instance=bot) is False
    assert bot.sent == []


async def test_make_notifier_binds_bot(monkeypatch):
    monkeypatch.setattr(config, "TELEGRAM_CHAT_ID", "7")
    bot = FakeBot()
    notify = notifier.make_notifier(bot)
    assert await notify("ping") is True
    assert bot.sent == [("7", "ping")]
