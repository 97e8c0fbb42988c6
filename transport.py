# -*- coding: utf-8 -*-
# transport.py - Telegram chat transport used by the router

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from telegram import Bot, ReactionTypeEmoji
from telegram.constants import ReactionEmoji
from telegram.request import HTTPXRequest
from telegram.error import TelegramError, NetworkError, BadRequest, TimedOut

from utils import get_error_description

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Raised when a send or download through the chat transport fails"""
    pass


@dataclass(frozen=True)
class MessageKey:
    """Address of a single message: the chat it lives in and its id inside that chat."""
    chat_id: str
    message_id: int

    @property
    def ref(self) -> str:
        """Globally unique rendering, used as the stored seller-forward identifier."""
        return f"{self.chat_id}:{self.message_id}"


@dataclass(frozen=True)
class Attachment:
    kind: str  # "document" or "image"
    file_id: str
    mime_type: Optional[str] = None
    file_name: Optional[str] = None


def check_reaction_emojis(*emojis: str) -> List[str]:
    """Return the emojis Telegram would refuse as reactions, warning about each one."""
    allowed = {e.value for e in ReactionEmoji}
    unsupported = [e for e in emojis if e not in allowed]
    for emoji in unsupported:
        logger.warning(f"'{emoji}' is not an allowed Telegram reaction - delayed reactions with it will be rejected")
    return unsupported


def build_bot(token: str) -> Bot:
    # Configure request with larger pool to prevent pool timeout
    request_cfg = HTTPXRequest(
        connection_pool_size=32,
        pool_timeout=30.0,
        read_timeout=30.0,
        write_timeout=30.0,
        connect_timeout=15.0,
    )
    return Bot(token=token, request=request_cfg)


class TelegramTransport:
    """
    Narrow send/receive capability handed to the router.

    Only plain text sends are retried. Media and reactions go out once: a retried
    media send after a timeout could hand the buyer the deliverable twice.
    """

    max_retries = 3

    def __init__(self, bot: Bot, session=None):
        self.bot = bot
        self.session = session

    def identifier_for_phone(self, phone: str) -> Optional[str]:
        # Telegram cannot address a user by phone number; records stay unlinked until auto-linking.
        return None

    def _report(self, error: Exception) -> None:
        if self.session is not None:
            self.session.report_error(error)

    async def send_text(self, to: str, text: str) -> MessageKey:
        for attempt in range(self.max_retries):
            try:
                msg = await self.bot.send_message(chat_id=to, text=text)
                return MessageKey(str(msg.chat_id), msg.message_id)
            except BadRequest as e:
                raise TransportError(get_error_description(e)) from e
            except TelegramError as e:
                logger.error(f"Send message attempt {attempt + 1} failed: {get_error_description(e)}")
                if attempt < self.max_retries - 1 and isinstance(e, NetworkError):
                    await asyncio.sleep(2 ** attempt)
                    continue
                self._report(e)
                raise TransportError(get_error_description(e)) from e

    async def send_media(self, to: str, data: bytes, kind: str, mime_type: Optional[str],
                         file_name: Optional[str], caption: str) -> MessageKey:
        try:
            if kind == "image":
                msg = await self.bot.send_photo(chat_id=to, photo=data, caption=caption, filename=file_name)
            else:
                msg = await self.bot.send_document(chat_id=to, document=data, caption=caption, filename=file_name)
        except TimedOut as e:
            # The upload may still have landed; never resend from here.
            logger.error(f"Media send to {to} timed out, delivery state unknown")
            raise TransportError(get_error_description(e)) from e
        except TelegramError as e:
            self._report(e)
            raise TransportError(get_error_description(e)) from e
        return MessageKey(str(msg.chat_id), msg.message_id)

    async def send_reaction(self, to: str, target: MessageKey, emoji: str) -> None:
        """Set ``emoji`` on ``target``; an empty emoji clears the reaction."""
        reaction = [ReactionTypeEmoji(emoji)] if emoji else []
        try:
            await self.bot.set_message_reaction(chat_id=to, message_id=target.message_id, reaction=reaction)
        except TelegramError as e:
            self._report(e)
            raise TransportError(get_error_description(e)) from e

    async def download_attachment(self, attachment: Attachment) -> bytes:
        try:
            tg_file = await self.bot.get_file(attachment.file_id)
            data = await tg_file.download_as_bytearray()
        except TelegramError as e:
            self._report(e)
            raise TransportError(get_error_description(e)) from e
        return bytes(data)
