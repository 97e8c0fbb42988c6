# -*- coding: utf-8 -*-
# Order Fulfillment Router - Telegram webhook, management API and wiring

# =============================================================================
# MAIN WORKFLOW OVERVIEW
# =============================================================================
# Client sends an order reference → copy forwarded to an ACTIVE admin →
# admin sends the deliverable back with the reference in its caption →
# document relayed to the client exactly once → order DELIVERED.
#
# CODE ORGANIZATION:
# 1. router.py    - classify inbound updates
# 2. identity.py  - resolve / auto-link senders
# 3. orders.py    - order creation and one-time delivery
# 4. timers.py    - delayed emoji acknowledgements
# 5. reactions.py - mirror admin reactions to buyers
# 6. session.py   - connection lifecycle, redis_push.py - dashboard events
# =============================================================================

import os
import hmac
import asyncio
import logging
import threading
from contextlib import closing
from threading import Timer
from flask import Flask, request, jsonify

import database
from redis_push import DashboardNotifier
from router import Router
from session import SessionManager
from transport import TelegramTransport, build_bot, check_reaction_emojis
from utils import (
    BOT_TOKEN,
    DUPLICATE_REACTION,
    UNMATCHED_REACTION,
    STATUS_ACTIVE,
    STATUS_INACTIVE,
    ORDER_VALIDATED,
    ORDER_DELIVERED,
    now,
)

logger = logging.getLogger(__name__)

EXIT_DELAY_SECONDS = 1.0

# --- FLASK APP SETUP ---
app = Flask(__name__)

# --- COMPONENTS ---
notifier = DashboardNotifier()
session = SessionManager(notifier)
bot = build_bot(BOT_TOKEN)
transport = TelegramTransport(bot, session)
router = Router(transport, notifier)

# Create event loop for async operations
loop = asyncio.new_event_loop()

_db_bootstrapped = False


def run_async(coro):
    """Run async function in background thread."""
    asyncio.run_coroutine_threadsafe(coro, loop)


@app.before_request
def _ensure_database_initialized():
    """Guarantee the SQLite schema exists before serving any request."""
    global _db_bootstrapped
    if not _db_bootstrapped:
        database.init_db()
        _db_bootstrapped = True


# --- WEBHOOK ENDPOINTS ---
@app.route("/", methods=["GET"])
def health_check():
    """Health check endpoint for monitoring"""
    with closing(database.get_db_connection()) as conn:
        total = database.count_orders(conn)
    return jsonify({
        "status": "healthy",
        "service": "order-fulfillment-router",
        "session": session.state,
        "orders": total,
        "timestamp": now().isoformat()
    }), 200


@app.route("/webhook/<token>", methods=["POST"])
def telegram_webhook(token):
    """Handle Telegram webhooks"""
    if not hmac.compare_digest(token, BOT_TOKEN):
        return jsonify({"error": "Forbidden"}), 403

    upd = request.get_json(force=True, silent=True)
    if not upd:
        return "OK"

    logger.info(f"=== INCOMING UPDATE {upd.get('update_id')} ===")
    run_async(router.handle_update(upd))
    return "OK"


# --- MANAGEMENT API ---
def _create_party(table: str):
    payload = request.get_json(silent=True) or {}
    name = (payload.get("name") or "").strip()
    phone = (payload.get("phone") or "").strip()
    status = payload.get("status") or STATUS_ACTIVE
    if not name or not phone:
        return jsonify({"error": "name and phone are required"}), 400
    if status not in (STATUS_ACTIVE, STATUS_INACTIVE):
        return jsonify({"error": f"invalid status: {status}"}), 400

    chat_id = payload.get("chat_id") or transport.identifier_for_phone(phone)
    chat_id = str(chat_id) if chat_id else None

    with closing(database.get_db_connection()) as conn:
        if chat_id and database.chat_id_in_use(conn, chat_id):
            return jsonify({"error": f"chat {chat_id} is already linked"}), 409
        record_id = database.create_party(conn, table, name, phone, chat_id, status)
    logger.info(f"Created {table[:-1]} {name} (id={record_id})")
    return jsonify({"success": True, "id": record_id})


def _delete_party(table: str, record_id: int):
    with closing(database.get_db_connection()) as conn:
        deleted = database.delete_party(conn, table, record_id)
    if not deleted:
        return jsonify({"error": "Not found"}), 404
    return jsonify({"success": True})


@app.route("/api/stats", methods=["GET"])
def api_stats():
    with closing(database.get_db_connection()) as conn:
        return jsonify({
            "total": database.count_orders(conn),
            "pending": database.count_orders(conn, ORDER_VALIDATED),
            "delivered": database.count_orders(conn, ORDER_DELIVERED),
            "activeAdmins": database.count_active_admins(conn),
        })


@app.route("/api/orders", methods=["GET"])
def api_orders():
    with closing(database.get_db_connection()) as conn:
        return jsonify(database.list_orders(conn))


@app.route("/api/admins", methods=["GET"])
def api_admins():
    with closing(database.get_db_connection()) as conn:
        return jsonify(database.list_parties(conn, "admins"))


@app.route("/api/clients", methods=["GET"])
def api_clients():
    with closing(database.get_db_connection()) as conn:
        return jsonify(database.list_parties(conn, "clients"))


@app.route("/api/admins", methods=["POST"])
def api_create_admin():
    return _create_party("admins")


@app.route("/api/clients", methods=["POST"])
def api_create_client():
    return _create_party("clients")


@app.route("/api/admins/<int:record_id>", methods=["DELETE"])
def api_delete_admin(record_id):
    return _delete_party("admins", record_id)


@app.route("/api/clients/<int:record_id>", methods=["DELETE"])
def api_delete_client(record_id):
    return _delete_party("clients", record_id)


@app.route("/api/session", methods=["GET"])
def api_session():
    """Live session state plus the status last pushed to dashboard observers."""
    payload = session.status_payload()
    payload["lastPushed"] = notifier.last_status()
    return jsonify(payload)


@app.route("/api/session/logout", methods=["POST"])
def api_logout():
    """Log the bot out and terminate the process."""
    session.logout()
    if app.config.get('TESTING'):
        logger.info("Skipping process exit while running tests")
    else:
        Timer(EXIT_DELAY_SECONDS, lambda: os._exit(0)).start()
    return jsonify({"success": True})


# --- APPLICATION ENTRY POINT ---
if __name__ == "__main__":
    port = int(os.environ.get("PORT", 10000))
    logger.info(f"Master Server Live on port {port}")

    database.init_db()
    _db_bootstrapped = True
    check_reaction_emojis(DUPLICATE_REACTION, UNMATCHED_REACTION)

    # Start the event loop in a separate thread
    def run_event_loop():
        asyncio.set_event_loop(loop)
        loop.run_forever()

    loop_thread = threading.Thread(target=run_event_loop)
    loop_thread.daemon = True
    loop_thread.start()

    threading.Thread(target=session.connect, daemon=True).start()

    app.run(host="0.0.0.0", port=port, debug=False)
