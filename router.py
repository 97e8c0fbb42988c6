# -*- coding: utf-8 -*-
# router.py - Classify inbound Telegram updates and dispatch them

import logging
from contextlib import closing
from dataclasses import dataclass
from typing import Any, Dict, Optional

import database
from identity import Identity, IdentityResolver
from orders import DeliveryStateMachine
from reactions import ReactionMirror
from timers import SuppressionTimers
from transport import Attachment, MessageKey
from utils import extract_admin_suffix, extract_buyer_reference, message_text, reaction_emoji

logger = logging.getLogger(__name__)

# =============================================================================
# DISPATCH RULES (first match wins)
# =============================================================================
# 1. Reaction on a forwarded order          → ReactionMirror (admins only)
# 2. Sender neither admin nor client        → ignored
# 3. Client with an 8-17 digit reference    → new order, forwarded to an admin
# 4. Admin with document/image + reference  → DeliveryStateMachine
# Everything else is dropped silently.
# =============================================================================


@dataclass
class InboundEvent:
    sender_id: str
    key: MessageKey
    text: str = ""
    attachment: Optional[Attachment] = None
    reaction: Optional[str] = None  # emoji, "" when cleared; None for plain messages


def _attachment_of(msg: Dict[str, Any]) -> Optional[Attachment]:
    document = msg.get("document")
    if document:
        return Attachment("document", document["file_id"], document.get("mime_type"), document.get("file_name"))
    photos = msg.get("photo")
    if photos:
        # Sizes come smallest first
        return Attachment("image", photos[-1]["file_id"], "image/jpeg", None)
    return None


def parse_update(upd: Dict[str, Any]) -> Optional[InboundEvent]:
    """Normalize a raw webhook update into an InboundEvent; None for anything not routed."""
    if "message_reaction" in upd:
        r = upd["message_reaction"]
        chat = r.get("chat", {})
        if chat.get("type") != "private" or r.get("user", {}).get("is_bot"):
            return None
        chat_id = str(chat["id"])
        return InboundEvent(
            sender_id=chat_id,
            key=MessageKey(chat_id, r["message_id"]),
            reaction=reaction_emoji(r.get("new_reaction")),
        )

    msg = upd.get("message")
    if not msg:
        return None
    chat = msg.get("chat", {})
    if chat.get("type") != "private" or msg.get("from", {}).get("is_bot"):
        return None

    chat_id = str(chat["id"])
    return InboundEvent(
        sender_id=chat_id,
        key=MessageKey(chat_id, msg["message_id"]),
        text=message_text(msg),
        attachment=_attachment_of(msg),
    )


def classify(event: InboundEvent, identity: Identity) -> Optional[str]:
    """Route name for a resolved event: "buyer", "admin" or None when dropped."""
    if not identity.known:
        return None
    if identity.client and not identity.admin:
        return "buyer" if extract_buyer_reference(event.text) else None
    if event.attachment is None:
        return None
    return "admin" if extract_admin_suffix(event.text) else None


class Router:
    def __init__(self, transport, notifier, db_path: Optional[str] = None, timers: Optional[SuppressionTimers] = None,
                 resolver: Optional[IdentityResolver] = None, delivery: Optional[DeliveryStateMachine] = None):
        self.db_path = db_path
        self.timers = timers or SuppressionTimers(transport)
        self.resolver = resolver or IdentityResolver(transport)
        self.delivery = delivery or DeliveryStateMachine(transport, notifier, self.timers)
        self.mirror = ReactionMirror(transport)

    async def handle_update(self, upd: Dict[str, Any]) -> Optional[str]:
        """Process one webhook update. Errors are logged and end this update only."""
        event = parse_update(upd)
        if event is None:
            return None
        try:
            return await self.handle_event(event)
        except Exception as e:
            logger.exception(f"Error handling update {upd.get('update_id')}: {e}")
            return "error"

    async def handle_event(self, event: InboundEvent) -> Optional[str]:
        with closing(database.get_db_connection(self.db_path)) as conn:
            if event.reaction is not None:
                # Only reactions from admins are mirrored
                if database.find_by_chat_id(conn, "admins", event.sender_id):
                    if await self.mirror.mirror(conn, event.key, event.reaction):
                        return "reaction"
                return None

            identity = await self.resolver.resolve(conn, event.sender_id, event.text)
            route = classify(event, identity)
            if route == "buyer":
                reference = extract_buyer_reference(event.text)
                order_id = await self.delivery.create_order(conn, identity.client, event.key, reference, event.text)
                return "order_created" if order_id else None
            if route == "admin":
                suffix = extract_admin_suffix(event.text)
                return await self.delivery.deliver(conn, event.key, suffix, event.attachment)

            logger.debug(f"Dropped message {event.key.ref}")
            return None
