import sqlite3
import logging
import uuid
from contextlib import closing
from typing import Any, Dict, List, Optional

from utils import DATABASE_PATH, STATUS_ACTIVE, ORDER_VALIDATED, ORDER_DELIVERED

logger = logging.getLogger(__name__)

DATABASE_FILE = DATABASE_PATH

PARTY_TABLES = ("admins", "clients")

ORDER_COLUMNS = (
    "order_ref",
    "customer",
    "buyer_chat_id",
    "content",
    "admin_name",
    "seller_forward_id",
    "buyer_msg_id",
    "status",
)


def get_db_connection(db_path: Optional[str] = None) -> sqlite3.Connection:
    """Establishes a connection to the SQLite database."""
    conn = sqlite3.connect(str(db_path or DATABASE_FILE), timeout=30.0, isolation_level='DEFERRED')
    try:
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
    except sqlite3.Error as e:
        logger.warning(f"Could not set PRAGMA settings: {e}")
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: Optional[str] = None) -> None:
    """Initializes the database schema and releases delivery claims left by a previous process."""
    with closing(get_db_connection(db_path)) as conn:
        cursor = conn.cursor()
        for table in PARTY_TABLES:
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    phone TEXT NOT NULL,
                    chat_id TEXT,
                    status TEXT NOT NULL DEFAULT 'ACTIVE'
                );
            """)
            cursor.execute(
                f"CREATE UNIQUE INDEX IF NOT EXISTS idx_{table}_chat_id ON {table}(chat_id) WHERE chat_id IS NOT NULL"
            )

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                id INTEGER PRIMARY KEY,
                order_ref TEXT NOT NULL,
                customer TEXT,
                buyer_chat_id TEXT NOT NULL,
                content TEXT,
                admin_name TEXT,
                seller_forward_id TEXT NOT NULL UNIQUE,
                buyer_msg_id TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'VALIDATED',
                delivery_claim TEXT,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP
            );
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status)")

        cursor.execute("UPDATE orders SET delivery_claim = NULL WHERE delivery_claim IS NOT NULL")
        if cursor.rowcount:
            logger.warning(f"Released {cursor.rowcount} stale delivery claim(s)")
        conn.commit()


def _row_to_dict(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    return dict(row) if row is not None else None


def _check_party_table(table: str) -> None:
    if table not in PARTY_TABLES:
        raise ValueError(f"Unknown party table: {table}")


# --- ADMINS / CLIENTS ---

def find_by_chat_id(conn: sqlite3.Connection, table: str, chat_id: str) -> Optional[Dict[str, Any]]:
    _check_party_table(table)
    row = conn.execute(f"SELECT * FROM {table} WHERE chat_id = ?", (chat_id,)).fetchone()
    return _row_to_dict(row)


def find_by_phone(conn: sqlite3.Connection, table: str, phone_digits: str) -> Optional[Dict[str, Any]]:
    """Match a normalized phone number against stored numbers, ignoring '+'."""
    _check_party_table(table)
    row = conn.execute(
        f"SELECT * FROM {table} WHERE REPLACE(phone, '+', '') = ? ORDER BY id LIMIT 1",
        (phone_digits,),
    ).fetchone()
    return _row_to_dict(row)


def link_chat_id(conn: sqlite3.Connection, table: str, record_id: int, chat_id: str) -> bool:
    """Bind a chat identifier to an unlinked record. Returns False when the record is already linked."""
    _check_party_table(table)
    cursor = conn.execute(
        f"UPDATE {table} SET chat_id = ? WHERE id = ? AND (chat_id IS NULL OR chat_id = '')",
        (chat_id, record_id),
    )
    conn.commit()
    return cursor.rowcount == 1


def chat_id_in_use(conn: sqlite3.Connection, chat_id: str) -> bool:
    """True when any admin or client is already linked to the identifier."""
    return any(find_by_chat_id(conn, table, chat_id) for table in PARTY_TABLES)


def first_active_admin(conn: sqlite3.Connection) -> Optional[Dict[str, Any]]:
    """First ACTIVE admin with a linked chat, by primary key order."""
    row = conn.execute(
        "SELECT * FROM admins WHERE status = ? AND chat_id IS NOT NULL AND chat_id != '' ORDER BY id LIMIT 1",
        (STATUS_ACTIVE,),
    ).fetchone()
    return _row_to_dict(row)


def list_parties(conn: sqlite3.Connection, table: str) -> List[Dict[str, Any]]:
    _check_party_table(table)
    return [dict(row) for row in conn.execute(f"SELECT * FROM {table} ORDER BY id")]


def create_party(conn: sqlite3.Connection, table: str, name: str, phone: str,
                 chat_id: Optional[str] = None, status: str = STATUS_ACTIVE) -> int:
    _check_party_table(table)
    cursor = conn.execute(
        f"INSERT INTO {table} (name, phone, chat_id, status) VALUES (?, ?, ?, ?)",
        (name, phone, chat_id, status),
    )
    conn.commit()
    return cursor.lastrowid


def delete_party(conn: sqlite3.Connection, table: str, record_id: int) -> bool:
    _check_party_table(table)
    cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
    conn.commit()
    return cursor.rowcount == 1


def count_active_admins(conn: sqlite3.Connection) -> int:
    return conn.execute("SELECT COUNT(*) FROM admins WHERE status = ?", (STATUS_ACTIVE,)).fetchone()[0]


# --- ORDERS ---

def create_order(conn: sqlite3.Connection, **fields: Any) -> int:
    fields.setdefault("status", ORDER_VALIDATED)
    values = tuple(fields.get(column) for column in ORDER_COLUMNS)
    placeholders = ", ".join("?" for _ in ORDER_COLUMNS)
    cursor = conn.execute(
        f"INSERT INTO orders ({', '.join(ORDER_COLUMNS)}) VALUES ({placeholders})",
        values,
    )
    conn.commit()
    return cursor.lastrowid


def get_order(conn: sqlite3.Connection, order_id: int) -> Optional[Dict[str, Any]]:
    return _row_to_dict(conn.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone())


def latest_order_by_suffix(conn: sqlite3.Connection, suffix: str) -> Optional[Dict[str, Any]]:
    """
    Most recently created order whose reference ends with ``suffix``.

    Two references sharing a tail cannot be told apart here; the newest one wins.
    """
    row = conn.execute(
        "SELECT * FROM orders WHERE substr(order_ref, -?) = ? ORDER BY created_at DESC, id DESC LIMIT 1",
        (len(suffix), suffix),
    ).fetchone()
    return _row_to_dict(row)


def order_by_seller_forward_id(conn: sqlite3.Connection, seller_forward_id: str) -> Optional[Dict[str, Any]]:
    row = conn.execute("SELECT * FROM orders WHERE seller_forward_id = ?", (seller_forward_id,)).fetchone()
    return _row_to_dict(row)


def list_orders(conn: sqlite3.Connection) -> List[Dict[str, Any]]:
    rows = conn.execute("SELECT * FROM orders ORDER BY created_at DESC, id DESC")
    return [dict(row) for row in rows]


def count_orders(conn: sqlite3.Connection, status: Optional[str] = None) -> int:
    if status is None:
        return conn.execute("SELECT COUNT(*) FROM orders").fetchone()[0]
    return conn.execute("SELECT COUNT(*) FROM orders WHERE status = ?", (status,)).fetchone()[0]


def claim_delivery(conn: sqlite3.Connection, order_id: int) -> Optional[str]:
    """
    Take the exclusive right to deliver a VALIDATED order.

    Returns the claim token, or None when the order is delivered or a delivery is in flight.
    """
    token = uuid.uuid4().hex
    cursor = conn.execute(
        "UPDATE orders SET delivery_claim = ? WHERE id = ? AND status = ? AND delivery_claim IS NULL",
        (token, order_id, ORDER_VALIDATED),
    )
    conn.commit()
    return token if cursor.rowcount == 1 else None


def complete_delivery(conn: sqlite3.Connection, order_id: int, token: str) -> bool:
    cursor = conn.execute(
        "UPDATE orders SET status = ?, delivery_claim = NULL WHERE id = ? AND delivery_claim = ? AND status = ?",
        (ORDER_DELIVERED, order_id, token, ORDER_VALIDATED),
    )
    conn.commit()
    return cursor.rowcount == 1


def release_delivery(conn: sqlite3.Connection, order_id: int, token: str) -> None:
    conn.execute(
        "UPDATE orders SET delivery_claim = NULL WHERE id = ? AND delivery_claim = ?",
        (order_id, token),
    )
    conn.commit()
