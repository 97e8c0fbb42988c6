import database


def _order(conn, ref="12345678", forward="1001:1"):
    return database.create_order(
        conn,
        order_ref=ref,
        customer="Buyer",
        buyer_chat_id="2002",
        content=f"order {ref}",
        admin_name="Seller",
        seller_forward_id=forward,
        buyer_msg_id="7",
    )


def test_new_orders_start_validated(conn):
    order = database.get_order(conn, _order(conn))
    assert order["status"] == "VALIDATED"
    assert order["delivery_claim"] is None
    assert order["created_at"]


def test_delivery_claim_is_exclusive(conn):
    order_id = _order(conn)

    token = database.claim_delivery(conn, order_id)
    assert token
    assert database.claim_delivery(conn, order_id) is None

    assert database.complete_delivery(conn, order_id, token)
    assert database.get_order(conn, order_id)["status"] == "DELIVERED"
    assert database.claim_delivery(conn, order_id) is None


def test_released_claim_leaves_order_deliverable(conn):
    order_id = _order(conn)
    token = database.claim_delivery(conn, order_id)

    database.release_delivery(conn, order_id, token)

    assert database.get_order(conn, order_id)["status"] == "VALIDATED"
    assert database.claim_delivery(conn, order_id) is not None


def test_complete_with_foreign_token_does_nothing(conn):
    order_id = _order(conn)
    database.claim_delivery(conn, order_id)

    assert not database.complete_delivery(conn, order_id, "not-the-token")
    assert database.get_order(conn, order_id)["status"] == "VALIDATED"


def test_init_db_releases_stale_claims(db_path, conn):
    order_id = _order(conn)
    database.claim_delivery(conn, order_id)

    database.init_db(db_path)

    assert database.get_order(conn, order_id)["delivery_claim"] is None


def test_latest_order_by_suffix(conn):
    _order(conn, "11115678", "1001:1")
    newest = _order(conn, "22225678", "1001:2")
    _order(conn, "33331234", "1001:3")

    assert database.latest_order_by_suffix(conn, "5678")["id"] == newest
    assert database.latest_order_by_suffix(conn, "9999") is None


def test_order_by_seller_forward_id(conn):
    order_id = _order(conn, forward="1001:42")

    assert database.order_by_seller_forward_id(conn, "1001:42")["id"] == order_id
    assert database.order_by_seller_forward_id(conn, "1002:42") is None


def test_find_by_phone_ignores_plus(conn):
    admin_id = database.create_party(conn, "admins", "Seller", "+4915112345678")

    assert database.find_by_phone(conn, "admins", "4915112345678")["id"] == admin_id
    assert database.find_by_phone(conn, "clients", "4915112345678") is None


def test_link_only_binds_unlinked_records(conn):
    unlinked = database.create_party(conn, "clients", "New", "111111111")
    linked = database.create_party(conn, "clients", "Old", "222222222", "2002")

    assert database.link_chat_id(conn, "clients", unlinked, "3003")
    assert not database.link_chat_id(conn, "clients", linked, "4004")
    assert database.find_by_chat_id(conn, "clients", "2002")["name"] == "Old"
    assert database.find_by_chat_id(conn, "clients", "3003")["name"] == "New"


def test_chat_id_in_use_spans_admins_and_clients(conn):
    database.create_party(conn, "admins", "Seller", "111111111", "1001")

    assert database.chat_id_in_use(conn, "1001")
    assert not database.chat_id_in_use(conn, "2002")


def test_first_active_admin_skips_inactive_and_unlinked(conn):
    database.create_party(conn, "admins", "Away", "111111111", "1001", "INACTIVE")
    database.create_party(conn, "admins", "Unlinked", "222222222")
    expected = database.create_party(conn, "admins", "Ready", "333333333", "1003")
    database.create_party(conn, "admins", "Later", "444444444", "1004")

    assert database.first_active_admin(conn)["id"] == expected
    assert database.count_active_admins(conn) == 3


def test_counts_by_status(conn):
    first = _order(conn, "11111111", "1001:1")
    _order(conn, "22222222", "1001:2")
    database.complete_delivery(conn, first, database.claim_delivery(conn, first))

    assert database.count_orders(conn) == 2
    assert database.count_orders(conn, "VALIDATED") == 1
    assert database.count_orders(conn, "DELIVERED") == 1
