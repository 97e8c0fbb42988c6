# -*- coding: utf-8 -*-
# identity.py - Resolve inbound senders to known admins or clients

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import database
from transport import TransportError
from utils import PHONE_MENTION_PATTERN, clean_phone

logger = logging.getLogger(__name__)

CandidateExtractor = Callable[[str], List[str]]


def phone_mentions(text: str) -> List[str]:
    """Every 8-15 digit run in the text, reduced to digits."""
    candidates = []
    for raw in PHONE_MENTION_PATTERN.findall(text or ""):
        num = clean_phone(raw)
        if num:
            candidates.append(num)
    return candidates


@dataclass
class Identity:
    admin: Optional[Dict[str, Any]] = None
    client: Optional[Dict[str, Any]] = None

    @property
    def known(self) -> bool:
        return bool(self.admin or self.client)


# Order matters: an admin phone wins over a client phone for the same candidate.
LINK_TARGETS = (
    ("admins", "admin", "Admin"),
    ("clients", "client", "Client"),
)


class IdentityResolver:
    def __init__(self, transport, extractor: CandidateExtractor = phone_mentions):
        self.transport = transport
        self.extractor = extractor

    async def resolve(self, conn, sender_id: str, text: str) -> Identity:
        identity = Identity(
            admin=database.find_by_chat_id(conn, "admins", sender_id),
            client=database.find_by_chat_id(conn, "clients", sender_id),
        )
        if identity.known:
            return identity

        for num in self.extractor(text):
            for table, attr, label in LINK_TARGETS:
                record = database.find_by_phone(conn, table, num)
                if not record or not database.link_chat_id(conn, table, record["id"], sender_id):
                    continue

                record = database.find_by_chat_id(conn, table, sender_id)
                setattr(identity, attr, record)
                logger.info(f"[LINK] {label} {record['name']} linked to chat {sender_id}")
                try:
                    await self.transport.send_text(sender_id, f"✅ {label} Linked: {record['name']}")
                except TransportError as e:
                    logger.error(f"Link confirmation to {sender_id} failed: {e}")
                return identity

        return identity
