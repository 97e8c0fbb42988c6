import asyncio
from types import SimpleNamespace

import pytest
from telegram.error import BadRequest, NetworkError, TimedOut

import transport as transport_module
from transport import Attachment, MessageKey, TelegramTransport, TransportError, check_reaction_emojis
from utils import DUPLICATE_REACTION, UNMATCHED_REACTION


class FakeBot:
    def __init__(self, failures=None):
        self.failures = list(failures or [])
        self.calls = []

    def _maybe_fail(self):
        if self.failures:
            raise self.failures.pop(0)

    async def send_message(self, chat_id, text):
        self.calls.append(("send_message", chat_id, text))
        self._maybe_fail()
        return SimpleNamespace(chat_id=int(chat_id), message_id=10)

    async def send_document(self, chat_id, document, caption, filename):
        self.calls.append(("send_document", chat_id, filename, caption))
        self._maybe_fail()
        return SimpleNamespace(chat_id=int(chat_id), message_id=11)

    async def send_photo(self, chat_id, photo, caption, filename):
        self.calls.append(("send_photo", chat_id, filename, caption))
        self._maybe_fail()
        return SimpleNamespace(chat_id=int(chat_id), message_id=12)

    async def set_message_reaction(self, chat_id, message_id, reaction):
        self.calls.append(("set_message_reaction", chat_id, message_id, reaction))
        self._maybe_fail()
        return True

    async def get_file(self, file_id):
        self._maybe_fail()

        async def download_as_bytearray():
            return bytearray(b"file:" + file_id.encode())

        return SimpleNamespace(download_as_bytearray=download_as_bytearray)


class RecordingSession:
    def __init__(self):
        self.errors = []

    def report_error(self, error):
        self.errors.append(error)


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    async def instant(seconds):
        return None
    monkeypatch.setattr(transport_module.asyncio, "sleep", instant)


def test_message_key_ref():
    assert MessageKey("1001", 7).ref == "1001:7"


def test_send_text_retries_network_errors():
    bot = FakeBot([NetworkError("reset"), NetworkError("reset")])
    key = asyncio.run(TelegramTransport(bot).send_text("1001", "hello"))

    assert key == MessageKey("1001", 10)
    assert len(bot.calls) == 3


def test_send_text_gives_up_and_reports():
    bot = FakeBot([NetworkError("reset")] * 3)
    session = RecordingSession()

    with pytest.raises(TransportError):
        asyncio.run(TelegramTransport(bot, session).send_text("1001", "hello"))

    assert len(bot.calls) == 3
    assert len(session.errors) == 1


def test_send_text_does_not_retry_bad_requests():
    bot = FakeBot([BadRequest("Chat not found")])

    with pytest.raises(TransportError, match="Chat not found"):
        asyncio.run(TelegramTransport(bot).send_text("1001", "hello"))
    assert len(bot.calls) == 1


def test_media_send_is_never_retried():
    bot = FakeBot([TimedOut()])

    with pytest.raises(TransportError):
        asyncio.run(TelegramTransport(bot).send_media("2002", b"pdf", "document", "application/pdf", "a.pdf", "cap"))
    assert len(bot.calls) == 1


def test_media_kind_selects_method():
    bot = FakeBot()
    t = TelegramTransport(bot)

    asyncio.run(t.send_media("2002", b"img", "image", "image/jpeg", None, "cap"))
    asyncio.run(t.send_media("2002", b"pdf", "document", "application/pdf", "a.pdf", "cap"))

    assert [call[0] for call in bot.calls] == ["send_photo", "send_document"]


def test_empty_emoji_clears_reaction():
    bot = FakeBot()
    t = TelegramTransport(bot)

    asyncio.run(t.send_reaction("2002", MessageKey("2002", 5), "👍"))
    asyncio.run(t.send_reaction("2002", MessageKey("2002", 5), ""))

    set_reaction = bot.calls[0][3]
    assert [r.emoji for r in set_reaction] == ["👍"]
    assert bot.calls[1][3] == []


def test_download_returns_bytes():
    data = asyncio.run(TelegramTransport(FakeBot()).download_attachment(Attachment("document", "abc")))
    assert data == b"file:abc"


def test_no_identifier_derived_from_phone():
    assert TelegramTransport(FakeBot()).identifier_for_phone("+4915112345678") is None


def test_default_reactions_are_flagged_as_unsupported(caplog):
    assert check_reaction_emojis(DUPLICATE_REACTION, UNMATCHED_REACTION) == ["❓", "🚫"]
    assert "not an allowed Telegram reaction" in caplog.text


def test_allowed_reactions_pass_the_check(caplog):
    assert check_reaction_emojis("🤔", "👎") == []
    assert caplog.text == ""
