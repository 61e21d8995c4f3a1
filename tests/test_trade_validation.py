"""Tests for trade value parity, PATCH validation and quick-trade prices."""

from datetime import datetime, timezone

import pytest

from trades import generate_room_code, ROOM_CODE_ALPHABET
from trades.validation import (
    TradeUpdateError,
    TradeValueError,
    compute_value_difference,
    side_total,
    validate_value_parity,
    validate_trade_updates,
    validate_quick_trade_prices,
    parse_timestamp
)

def test_parity_rejects_large_difference():
    """100 against 85 is a 15% gap and is refused."""
    with pytest.raises(TradeValueError):
        validate_value_parity(100, 85, max_difference=10)

def test_parity_accepts_small_difference():
    """100 against 92 is an 8% gap and passes."""
    assert validate_value_parity(100, 92, max_difference=10) == pytest.approx(8)

def test_parity_boundary_is_inclusive():
    """A gap of exactly the maximum is allowed."""
    assert validate_value_parity(100, 90, max_difference=10) == pytest.approx(10)

def test_parity_skipped_without_totals():
    """Sides without any valued card are not compared."""
    assert validate_value_parity(None, 50) is None
    assert validate_value_parity(50, None) is None

def test_parity_uses_configured_maximum():
    """The default maximum comes from settings (10%)."""
    with pytest.raises(TradeValueError):
        validate_value_parity(100, 80)

def test_value_difference_of_empty_sides():
    assert compute_value_difference(0, 0) == 0

def test_side_total_ignores_unvalued_cards():
    """Only cards carrying an estimated value count towards a side."""
    cards = [
        {"user_card_id": "a", "estimated_value": 40},
        {"user_card_id": "b"},
        {"user_card_id": "c", "estimated_value": 2.5}
    ]
    assert side_total(cards) == 42.5
    assert side_total([{"user_card_id": "a"}]) is None

def test_updates_reject_unknown_fields():
    """A PATCH may only touch status, completed_at and messages."""
    with pytest.raises(TradeUpdateError) as exc:
        validate_trade_updates({"status": "accepted", "initiator_user_id": "x"})
    assert "initiator_user_id" in str(exc.value)

def test_updates_reject_unknown_status():
    with pytest.raises(TradeUpdateError):
        validate_trade_updates({"status": "shipped"})

def test_updates_reject_malformed_messages():
    """Every message needs a sender and a body."""
    with pytest.raises(TradeUpdateError):
        validate_trade_updates({"messages": "hello"})
    with pytest.raises(TradeUpdateError):
        validate_trade_updates({"messages": [{"message": "no sender"}]})

def test_updates_parse_timestamps():
    """completed_at and message timestamps come back as aware datetimes."""
    updates = validate_trade_updates({
        "status": "completed",
        "completed_at": "2024-05-01T12:00:00Z",
        "messages": [{"sender_user_id": "u1", "message": "deal"}]
    })
    assert updates["completed_at"] == datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
    assert updates["messages"][0]["created_at"] is None
    assert updates["status"] == "completed"

def test_parse_timestamp():
    naive = parse_timestamp("2024-05-01T12:00:00")
    assert naive.tzinfo == timezone.utc
    assert parse_timestamp(None) is None
    with pytest.raises(TradeUpdateError):
        parse_timestamp("yesterday")

def test_quick_trade_prices():
    """Quick trades allow up to a 25% relative price gap."""
    validate_quick_trade_prices(100, 80)
    validate_quick_trade_prices(100, 75)
    with pytest.raises(TradeValueError):
        validate_quick_trade_prices(100, 70)

def test_quick_trade_prices_skipped_without_prices():
    """Missing or zero prices skip the check."""
    validate_quick_trade_prices(None, 100)
    validate_quick_trade_prices(0, 100)

def test_room_codes():
    """Room codes are ten URL-safe characters and differ between calls."""
    codes = {generate_room_code() for _ in range(20)}
    assert len(codes) == 20
    for code in codes:
        assert len(code) == 10
        assert set(code) <= set(ROOM_CODE_ALPHABET)
