# -*- coding: utf-8 -*-
# utils.py - Shared configuration, logging and text helpers for the Order Fulfillment Router

import os
import re
import logging
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# --- ENVIRONMENT VARIABLES ---
BOT_TOKEN = os.environ.get("BOT_TOKEN", "")
WEBHOOK_URL = os.environ.get("WEBHOOK_URL", "")
DATABASE_PATH = os.environ.get("DATABASE_PATH", "system.db")
REDIS_URL = os.environ.get("REDIS_URL", "")
DASHBOARD_CHANNEL = os.environ.get("DASHBOARD_CHANNEL", "order-dashboard")
RECONNECT_MAX_ATTEMPTS = int(os.environ.get("RECONNECT_MAX_ATTEMPTS", 5))

# Delayed acknowledgement instead of an instant reply (2 minutes)
REACTION_DELAY_SECONDS = float(os.environ.get("REACTION_DELAY_SECONDS", 120))
# Telegram only accepts emojis from its reaction list (telegram.constants.ReactionEmoji);
# ❓ and 🚫 are not on it, so bots usually override both. Checked at startup.
DUPLICATE_REACTION = os.environ.get("DUPLICATE_REACTION", "❓")
UNMATCHED_REACTION = os.environ.get("UNMATCHED_REACTION", "🚫")

# --- CONSTANTS ---
STATUS_ACTIVE = "ACTIVE"
STATUS_INACTIVE = "INACTIVE"
ORDER_VALIDATED = "VALIDATED"
ORDER_DELIVERED = "DELIVERED"

# Buyer references are long, admins may retype a shorter tail
BUYER_REFERENCE_PATTERN = re.compile(r"\d{8,17}")
ADMIN_REFERENCE_PATTERN = re.compile(r"\d{4,17}")
PHONE_MENTION_PATTERN = re.compile(r"\d{8,15}")
SUFFIX_LENGTH = 4


def now() -> datetime:
    """Current UTC time."""
    return datetime.now(timezone.utc)


def clean_phone(num: Optional[str]) -> str:
    """Strip everything that is not a digit."""
    return re.sub(r"\D", "", num) if num else ""


def extract_buyer_reference(text: str) -> Optional[str]:
    """First 8-17 digit run in a buyer message, used verbatim as the order reference."""
    match = BUYER_REFERENCE_PATTERN.search(text or "")
    return match.group(0) if match else None


def extract_admin_suffix(text: str) -> Optional[str]:
    """Trailing four digits of the first 4-17 digit run in an admin message."""
    match = ADMIN_REFERENCE_PATTERN.search(text or "")
    if not match:
        return None
    return match.group(0)[-SUFFIX_LENGTH:]


def message_text(msg: Dict[str, Any]) -> str:
    """
    Text carried by a Telegram message.

    Plain text wins, then the media caption, then the document file name.
    """
    document = msg.get("document") or {}
    return msg.get("text") or msg.get("caption") or document.get("file_name") or ""


def reaction_emoji(new_reaction: List[Dict[str, Any]]) -> str:
    """First plain emoji of a reaction list; empty string means the reaction was removed."""
    for reaction in new_reaction or []:
        if reaction.get("type") == "emoji" and reaction.get("emoji"):
            return reaction["emoji"]
    return ""


def get_error_description(error: Exception) -> str:
    """
    Get a short error description based on exception type.

    Examples:
        TimedOut → "Network timeout"
        Forbidden → "Bot blocked by user or insufficient permissions"
    """
    from telegram.error import TimedOut, NetworkError, RetryAfter, Forbidden, BadRequest, InvalidToken

    if isinstance(error, TimedOut):
        return "Network timeout"
    elif isinstance(error, RetryAfter):
        return f"Rate limit exceeded (retry in {error.retry_after}s)"
    elif isinstance(error, NetworkError) and not isinstance(error, BadRequest):
        return "Network connection lost"
    elif isinstance(error, InvalidToken):
        return "Bot token rejected"
    elif isinstance(error, Forbidden):
        return "Bot blocked by user or insufficient permissions"
    elif isinstance(error, BadRequest):
        error_msg = str(error).lower()
        if "chat not found" in error_msg:
            return "Chat not found"
        elif "message to react not found" in error_msg:
            return "Message not found"
        elif "reaction_invalid" in error_msg:
            return "Reaction not allowed"
        else:
            return f"Invalid request ({error_msg[:50]})"
    elif isinstance(error, ConnectionError):
        return "Connection error"

    return f"{type(error).__name__}: {str(error)[:80]}"
