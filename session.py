# -*- coding: utf-8 -*-
# session.py - Connection lifecycle of the bot session

import logging
import threading
import time
from typing import Any, Dict, Optional

import requests
from telegram.error import BadRequest, InvalidToken, NetworkError

from utils import BOT_TOKEN, WEBHOOK_URL, RECONNECT_MAX_ATTEMPTS

logger = logging.getLogger(__name__)

# =============================================================================
# SESSION LIFECYCLE
# =============================================================================
# DISCONNECTED → PAIRING (setWebhook + getMe) → CONNECTED → CLOSED
#
# A lost connection goes back to DISCONNECTED and re-registers in the
# background. When pairing gives up, another round is scheduled with a
# doubling delay capped at MAX_RETRY_DELAY. A rejected token counts as a
# logout: CLOSED, no reconnect.
# Every transition is pushed to the dashboard as "connection_status".
# =============================================================================

DISCONNECTED = "Disconnected"
PAIRING = "Pairing"
CONNECTED = "Connected"
CLOSED = "Closed"

ALLOWED_UPDATES = ["message", "message_reaction"]

# Delay before a new pairing round once all attempts of the previous one failed
RETRY_DELAY = 30.0
MAX_RETRY_DELAY = 300.0


class SessionError(Exception):
    """Bot API call rejected during pairing"""
    pass


class LoggedOut(SessionError):
    """Bot token no longer accepted"""
    pass


class SessionManager:
    api_base = "https://api.telegram.org"

    def __init__(self, notifier, token: str = BOT_TOKEN, webhook_url: str = WEBHOOK_URL,
                 max_attempts: int = RECONNECT_MAX_ATTEMPTS):
        self.notifier = notifier
        self.token = token
        self.webhook_url = webhook_url
        self.max_attempts = max_attempts
        self.state = DISCONNECTED
        self.phone: Optional[str] = None
        self._lock = threading.Lock()
        self._retry_timer: Optional[threading.Timer] = None
        self._retry_delay = RETRY_DELAY

    def status_payload(self) -> Dict[str, Any]:
        return {"status": self.state, "phone": self.phone if self.state == CONNECTED else None}

    def _set_state(self, state: str) -> None:
        self.state = state
        logger.info(f"Session state → {state}")
        self.notifier.emit("connection_status", self.status_payload())

    def _call(self, method: str, **params) -> Any:
        response = requests.post(f"{self.api_base}/bot{self.token}/{method}", json=params, timeout=10)
        try:
            data = response.json()
        except ValueError:
            raise SessionError(f"{method}: HTTP {response.status_code}")
        if not data.get("ok"):
            if data.get("error_code") == 401:
                raise LoggedOut(f"{method}: {data.get('description')}")
            raise SessionError(f"{method}: {data.get('description')}")
        return data.get("result")

    def connect(self) -> bool:
        """Register the webhook and confirm the bot identity, retrying with back-off."""
        with self._lock:
            if self.state in (CLOSED, CONNECTED):
                return self.state == CONNECTED
            self._set_state(PAIRING)

            for attempt in range(self.max_attempts):
                try:
                    if self.webhook_url:
                        self._call(
                            "setWebhook",
                            url=f"{self.webhook_url.rstrip('/')}/webhook/{self.token}",
                            allowed_updates=ALLOWED_UPDATES,
                        )
                    else:
                        logger.warning("WEBHOOK_URL not set - webhook registration skipped")
                    me = self._call("getMe")
                    self.phone = me.get("username")
                    self._retry_delay = RETRY_DELAY
                    self._set_state(CONNECTED)
                    logger.info("✅ SYSTEM ONLINE")
                    return True
                except LoggedOut as e:
                    logger.error(f"Session rejected: {e}")
                    self._set_state(CLOSED)
                    return False
                except (requests.RequestException, SessionError) as e:
                    logger.error(f"Pairing attempt {attempt + 1} failed: {e}")
                    if attempt < self.max_attempts - 1:
                        time.sleep(2 ** attempt)

            logger.error(f"Pairing failed after {self.max_attempts} attempts")
            self._set_state(DISCONNECTED)
            self._schedule_retry()
            return False

    def _schedule_retry(self) -> None:
        self._cancel_retry()
        delay = self._retry_delay
        self._retry_delay = min(self._retry_delay * 2, MAX_RETRY_DELAY)
        logger.info(f"Next pairing round in {delay:.0f}s")
        self._retry_timer = threading.Timer(delay, self.connect)
        self._retry_timer.daemon = True
        self._retry_timer.start()

    def _cancel_retry(self) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None

    def connection_lost(self, logged_out: bool = False) -> None:
        if self.state == CLOSED:
            return
        if logged_out:
            self._cancel_retry()
            self._set_state(CLOSED)
            return
        if self.state == PAIRING or self._lock.locked():
            # Pairing already in flight
            return
        if self.state == CONNECTED:
            self._set_state(DISCONNECTED)
        self._cancel_retry()
        threading.Thread(target=self.connect, daemon=True).start()

    def report_error(self, error: Exception) -> None:
        """Transport failure hook: decide whether the session itself is gone."""
        if isinstance(error, InvalidToken):
            self.connection_lost(logged_out=True)
        elif isinstance(error, NetworkError) and not isinstance(error, BadRequest):
            self.connection_lost()

    def logout(self) -> None:
        """Tear down the webhook and log the bot out; the session never reconnects after this."""
        for method in ("deleteWebhook", "logOut"):
            try:
                self._call(method)
            except (requests.RequestException, SessionError) as e:
                logger.error(f"{method} failed during logout: {e}")
        self._cancel_retry()
        self.phone = None
        self._set_state(CLOSED)
