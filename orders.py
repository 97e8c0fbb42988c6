# -*- coding: utf-8 -*-
# orders.py - Order creation (buyer → admin) and one-time delivery (admin → buyer)

import logging
from typing import Any, Dict, Optional

import database
from transport import Attachment, MessageKey, TransportError
from utils import (
    ORDER_DELIVERED,
    ORDER_VALIDATED,
    REACTION_DELAY_SECONDS,
    DUPLICATE_REACTION,
    UNMATCHED_REACTION,
)

logger = logging.getLogger(__name__)

# =============================================================================
# ORDER LIFECYCLE
# =============================================================================
# Client message with a reference → copy forwarded to the first ACTIVE admin
# → order stored as VALIDATED → admin sends the document/image back with the
# reference tail in its caption → file relayed to the buyer → DELIVERED.
#
# DELIVERED is terminal. A delivery is only attempted after claim_delivery()
# succeeds, so the buyer never receives the deliverable twice. Resends and
# unmatched references get a delayed emoji on the admin's own message.
# =============================================================================


class OrderMatcher:
    """Fuzzy lookup used on the fulfillment side."""

    def match(self, conn, suffix: str) -> Optional[Dict[str, Any]]:
        # Suffix collisions resolve to the most recently created order.
        return database.latest_order_by_suffix(conn, suffix)


class DeliveryStateMachine:
    def __init__(self, transport, notifier, timers, matcher: Optional[OrderMatcher] = None,
                 reaction_delay: float = REACTION_DELAY_SECONDS,
                 duplicate_reaction: str = DUPLICATE_REACTION,
                 unmatched_reaction: str = UNMATCHED_REACTION):
        self.transport = transport
        self.notifier = notifier
        self.timers = timers
        self.matcher = matcher or OrderMatcher()
        self.reaction_delay = reaction_delay
        self.duplicate_reaction = duplicate_reaction
        self.unmatched_reaction = unmatched_reaction

    async def create_order(self, conn, client: Dict[str, Any], buyer_key: MessageKey,
                           reference: str, text: str) -> Optional[int]:
        """Forward a buyer's request to an admin and record it as VALIDATED."""
        admin = database.first_active_admin(conn)
        if not admin:
            logger.warning(f"No active linked admin for order {reference} from {client['name']}")
            return None

        try:
            forwarded = await self.transport.send_text(admin["chat_id"], text)
        except TransportError as e:
            logger.error(f"Forwarding order {reference} to {admin['name']} failed: {e}")
            return None

        order_id = database.create_order(
            conn,
            order_ref=reference,
            customer=client["name"],
            buyer_chat_id=buyer_key.chat_id,
            content=text,
            admin_name=admin["name"],
            seller_forward_id=forwarded.ref,
            buyer_msg_id=str(buyer_key.message_id),
            status=ORDER_VALIDATED,
        )
        logger.info(f"Order {reference} from {client['name']} forwarded to {admin['name']} (id={order_id})")

        self.notifier.emit("new_order", {
            "order_id": reference,
            "customer": client["name"],
            "admin": admin["name"],
            "status": ORDER_VALIDATED,
        })
        return order_id

    async def deliver(self, conn, admin_key: MessageKey, suffix: str, attachment: Attachment) -> str:
        """
        Relay an admin's attachment to the buyer of the order matching ``suffix``.

        Returns the outcome: "delivered", "duplicate", "unmatched" or "failed".
        """
        record = self.matcher.match(conn, suffix)
        if not record:
            logger.info(f"No order ending in {suffix}")
            self.timers.schedule(self.reaction_delay, admin_key.chat_id, admin_key, self.unmatched_reaction)
            return "unmatched"

        token = None
        if record["status"] != ORDER_DELIVERED:
            token = database.claim_delivery(conn, record["id"])
        if token is None:
            # --- STRICT RULE: ONE-TIME DELIVERY ---
            logger.info(f"[STRICT] Blocked resend for {suffix}. Triggering delayed reaction.")
            self.timers.schedule(self.reaction_delay, admin_key.chat_id, admin_key, self.duplicate_reaction)
            return "duplicate"

        # Anything short of a finished send, cancellation included, gives the claim back
        sent = False
        try:
            data = await self.transport.download_attachment(attachment)
            await self.transport.send_media(
                record["buyer_chat_id"],
                data,
                attachment.kind,
                attachment.mime_type,
                attachment.file_name or (f"Order_{record['order_ref']}.pdf" if attachment.kind == "document" else None),
                f"Here is your document for Order #{record['order_ref']}",
            )
            sent = True
        except TransportError as e:
            logger.error(f"Forwarding failed for order {record['order_ref']}: {e}")
            return "failed"
        finally:
            if not sent:
                database.release_delivery(conn, record["id"], token)

        database.complete_delivery(conn, record["id"], token)
        logger.info(f"[SUCCESS] Document delivered to {record['customer']} for order {record['order_ref']}")
        return "delivered"
