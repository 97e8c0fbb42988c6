from utils import (
    clean_phone,
    extract_admin_suffix,
    extract_buyer_reference,
    message_text,
    reaction_emoji,
    REACTION_DELAY_SECONDS,
)


def test_buyer_reference_needs_eight_digits():
    assert extract_buyer_reference("order 12345678") == "12345678"
    assert extract_buyer_reference("order 1234567") is None
    assert extract_buyer_reference(None) is None


def test_admin_suffix_is_last_four_digits():
    assert extract_admin_suffix("5678") == "5678"
    assert extract_admin_suffix("done #0012345678 and 99998888") == "5678"
    assert extract_admin_suffix("123") is None


def test_clean_phone():
    assert clean_phone("+49 (151) 123-45") == "4915112345"
    assert clean_phone(None) == ""


def test_message_text_precedence():
    assert message_text({"text": "hi", "caption": "cap"}) == "hi"
    assert message_text({"caption": "cap", "document": {"file_name": "a.pdf"}}) == "cap"
    assert message_text({"document": {"file_name": "Order_1234.pdf"}}) == "Order_1234.pdf"
    assert message_text({"photo": []}) == ""


def test_reaction_emoji():
    assert reaction_emoji([{"type": "emoji", "emoji": "👍"}]) == "👍"
    assert reaction_emoji([{"type": "custom_emoji", "custom_emoji_id": "1"}]) == ""
    assert reaction_emoji([]) == ""
    assert reaction_emoji(None) == ""


def test_default_reaction_delay_is_two_minutes():
    assert REACTION_DELAY_SECONDS == 120
