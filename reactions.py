# -*- coding: utf-8 -*-
# reactions.py - Mirror admin reactions on forwarded orders onto the buyer's message

import logging

import database
from transport import MessageKey, TransportError

logger = logging.getLogger(__name__)


class ReactionMirror:
    def __init__(self, transport):
        self.transport = transport

    async def mirror(self, conn, target: MessageKey, emoji: str) -> bool:
        """Re-emit ``emoji`` (empty clears) on the buyer's original message. Returns True when sent."""
        order = database.order_by_seller_forward_id(conn, target.ref)
        if not order:
            return False

        buyer_key = MessageKey(order["buyer_chat_id"], int(order["buyer_msg_id"]))
        try:
            await self.transport.send_reaction(order["buyer_chat_id"], buyer_key, emoji)
        except TransportError as e:
            logger.error(f"Reaction mirror for order {order['order_ref']} failed: {e}")
            return False

        logger.info(f"[MIRROR] '{emoji}' mirrored to {order['customer']} for order {order['order_ref']}")
        return True
