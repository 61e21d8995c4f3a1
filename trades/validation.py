"""Trade value checks and PATCH validation."""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from config import settings_conf

STATUSES = ('pending', 'accepted', 'rejected', 'completed', 'cancelled')
TRADE_TYPES = ('public', 'private')

# The only fields a trade PATCH may carry
ALLOWED_UPDATES = {'status', 'completed_at', 'messages'}

class TradeError(Exception):
    """Base exception for trade operations."""
    pass

class TradeNotFoundError(TradeError):
    """Raised when a trade is not found."""
    pass

class TradeValueError(TradeError):
    """Raised when the two sides of a trade differ too much in value."""
    pass

class TradeUpdateError(TradeError):
    """Raised when a trade update carries disallowed fields or values."""
    pass

class TradePermissionError(TradeError):
    """Raised when a user acts on a trade they may not act on."""
    pass

class TradeStateError(TradeError):
    """Raised when a trade is not in a state that allows the action."""
    pass

def compute_value_difference(initiator_total: float, receiver_total: float) -> float:
    """Percentage difference between the two side totals, relative to the larger one.

    Returns 0 when both totals are 0.
    """
    larger = max(initiator_total, receiver_total)
    if larger == 0:
        return 0
    return abs(initiator_total - receiver_total) / larger * 100

def side_total(cards: Iterable[Dict[str, Any]]) -> Optional[float]:
    """Sum the estimated values of one side's cards.

    Returns None when no card on the side carries a value.
    """
    values = [c['estimated_value'] for c in cards if c.get('estimated_value') is not None]
    if not values:
        return None
    return float(sum(values))

def validate_value_parity(
    initiator_total: Optional[float],
    receiver_total: Optional[float],
    max_difference: Optional[float] = None
) -> Optional[float]:
    """Apply the value-parity rule.

    Args:
        initiator_total: Initiator's side total, or None if unknown
        receiver_total: Receiver's side total, or None if unknown
        max_difference: Largest allowed difference in percent, defaults to settings

    Returns:
        The difference percentage, or None when either total is missing

    Raises:
        TradeValueError: If the difference exceeds the allowed maximum
    """
    if initiator_total is None or receiver_total is None:
        return None

    if max_difference is None:
        max_difference = settings_conf['max_value_difference_percent']

    difference = compute_value_difference(initiator_total, receiver_total)
    if difference > max_difference:
        raise TradeValueError(
            f"Trade value difference of {difference:.2f}% exceeds the allowed {max_difference:g}%"
        )
    return difference

def parse_timestamp(value: Any) -> Optional[datetime]:
    """Accept a datetime or an ISO-8601 string.

    Raises:
        TradeUpdateError: If the string is not a timestamp
    """
    if value is None or isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        raise TradeUpdateError(f"Invalid timestamp: {value}")
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

def validate_trade_updates(updates: Dict[str, Any]) -> Dict[str, Any]:
    """Reject PATCH bodies with keys outside ALLOWED_UPDATES or bad values.

    Returns:
        A copy of the updates with timestamps parsed

    Raises:
        TradeUpdateError: If the update is not allowed
    """
    invalid_fields = set(updates.keys()) - ALLOWED_UPDATES
    if invalid_fields:
        raise TradeUpdateError(f"Invalid update fields: {sorted(invalid_fields)}")

    if 'status' in updates and updates['status'] not in STATUSES:
        raise TradeUpdateError(f"Invalid status: {updates['status']}")

    if 'messages' in updates:
        messages = updates['messages']
        if not isinstance(messages, list):
            raise TradeUpdateError("messages must be a list")
        for message in messages:
            if not isinstance(message, dict) or not message.get('sender_user_id') or not message.get('message'):
                raise TradeUpdateError("Each message needs sender_user_id and message")

    normalized = dict(updates)
    if 'completed_at' in normalized:
        normalized['completed_at'] = parse_timestamp(normalized['completed_at'])
    if 'messages' in normalized:
        normalized['messages'] = [
            dict(message, created_at=parse_timestamp(message.get('created_at')))
            for message in normalized['messages']
        ]
    return normalized

def validate_quick_trade_prices(
    offered_price: Optional[float],
    target_price: Optional[float],
    max_relative_difference: Optional[float] = None
) -> None:
    """Check a quick trade's two card prices are within the allowed relative gap.

    Skipped when either price is missing or zero.

    Raises:
        TradeValueError: If the gap is too large
    """
    if not offered_price or not target_price:
        return

    if max_relative_difference is None:
        max_relative_difference = settings_conf['quick_trade_max_price_diff']

    gap = abs(offered_price - target_price) / max(offered_price, target_price)
    if gap > max_relative_difference:
        raise TradeValueError(
            f"Price difference of {gap * 100:.0f}% exceeds the allowed "
            f"{max_relative_difference * 100:.0f}% for a quick trade"
        )
