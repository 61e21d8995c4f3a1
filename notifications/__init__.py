"""Notifications module.

Notifications are stored per user and pushed in real time as a
``notification`` event to the ``user:<id>`` socket room. Creation honors
the recipient's notification toggles; system notifications always go out.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from database import get_pool, command_count
from users import parse_uuid

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = ('trade', 'message', 'friendRequest', 'system')

# Notification type -> users column that must be true for delivery
TOGGLES = {
    'trade': 'notify_trades',
    'message': 'notify_messages',
    'friendRequest': 'notify_friend_requests'
}

Publisher = Callable[[str, str, Dict[str, Any]], Awaitable[None]]

class NotificationError(Exception):
    """Base exception for notification operations."""
    pass

class NotificationNotFoundError(NotificationError):
    """Raised when a notification is not found."""
    pass

def user_room(user_id: Any) -> str:
    """Name of the socket room every connection of a user joins."""
    return f"user:{user_id}"

def serialize_notification(row) -> Dict[str, Any]:
    return {
        'id': str(row['id']),
        'user_id': str(row['user_id']),
        'type': row['type'],
        'title': row['title'],
        'message': row['message'],
        'is_read': row['is_read'],
        'related_id': row['related_id'],
        'data': row['data'],
        'created_at': row['created_at'].isoformat() if row['created_at'] else None
    }

def should_deliver(notification_type: str, preferences) -> bool:
    """Whether a user's toggles allow a notification of this type.

    Args:
        notification_type: One of NOTIFICATION_TYPES
        preferences: Mapping holding the user's notify_* columns
    """
    column = TOGGLES.get(notification_type)
    if column is None:
        return True
    return bool(preferences[column])

class NotificationManager:
    """Manager class for user notifications."""

    def __init__(self, pool=None, publisher: Optional[Publisher] = None):
        """Initialize the notification manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
            publisher: Coroutine ``(room, event, payload)`` used for real-time delivery
        """
        self.pool = pool
        self.publisher = publisher

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    def set_publisher(self, publisher: Optional[Publisher]) -> None:
        """Attach the real-time delivery hook."""
        self.publisher = publisher

    async def publish(self, user_id: Any, notification: Dict[str, Any]) -> None:
        """Push a stored notification to the user's socket room.

        Delivery is best-effort; failures are logged.
        """
        if self.publisher is None:
            return
        try:
            await self.publisher(user_room(user_id), 'notification', notification)
        except Exception as e:
            logger.error(f"Error pushing notification to user {user_id}: {e}")

    async def create_notification(
        self,
        user_id: Any,
        notification_type: str,
        title: str,
        message: str,
        related_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """Store a notification and push it to the user.

        Args:
            user_id: Recipient's id
            notification_type: trade, message, friendRequest or system
            title: Short title
            message: Notification body
            related_id: Optional id of the related trade, request or user
            data: Optional extra payload for the client

        Returns:
            The stored notification, or None when the recipient's toggles
            suppress this type or the recipient doesn't exist

        Raises:
            NotificationError: If the type is unknown
        """
        if notification_type not in NOTIFICATION_TYPES:
            raise NotificationError(f"Invalid notification type: {notification_type}")

        user_uuid = parse_uuid(user_id)
        if not user_uuid:
            return None

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            preferences = await conn.fetchrow(
                '''
                SELECT notify_trades, notify_messages, notify_friend_requests
                FROM users WHERE id = $1
                ''',
                user_uuid
            )
            if not preferences:
                logger.warning(f"Skipping notification for unknown user {user_id}")
                return None
            if not should_deliver(notification_type, preferences):
                return None

            row = await conn.fetchrow(
                '''
                INSERT INTO notifications (user_id, type, title, message, related_id, data)
                VALUES ($1, $2, $3, $4, $5, $6)
                RETURNING *
                ''',
                user_uuid,
                notification_type,
                title,
                message,
                str(related_id) if related_id is not None else None,
                data
            )

        notification = serialize_notification(row)
        await self.publish(user_uuid, notification)
        return notification

    async def list_notifications(self, user_id: str, limit: int = 10, skip: int = 0) -> Dict[str, Any]:
        """List a user's notifications, newest first.

        Returns:
            Dict with notifications, total, unread, limit and skip

        Raises:
            NotificationError: If the user id is malformed
        """
        user_uuid = parse_uuid(user_id)
        if not user_uuid:
            raise NotificationError(f"Invalid user id: {user_id}")
        limit = max(1, limit)
        skip = max(0, skip)

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT * FROM notifications
                WHERE user_id = $1
                ORDER BY created_at DESC
                LIMIT $2 OFFSET $3
                ''',
                user_uuid,
                limit,
                skip
            )
            counts = await conn.fetchrow(
                '''
                SELECT COUNT(*) AS total,
                       COUNT(*) FILTER (WHERE NOT is_read) AS unread
                FROM notifications
                WHERE user_id = $1
                ''',
                user_uuid
            )

        return {
            'notifications': [serialize_notification(row) for row in rows],
            'total': counts['total'],
            'unread': counts['unread'],
            'limit': limit,
            'skip': skip
        }

    async def mark_read(self, notification_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        """Mark one notification as read.

        Args:
            notification_id: Notification to mark
            user_id: When given, only a notification owned by this user matches

        Raises:
            NotificationNotFoundError: If the notification doesn't exist
        """
        notification_uuid = parse_uuid(notification_id)
        if not notification_uuid:
            raise NotificationNotFoundError(f"Notification {notification_id} not found")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                UPDATE notifications SET is_read = true
                WHERE id = $1 AND ($2::uuid IS NULL OR user_id = $2)
                RETURNING *
                ''',
                notification_uuid,
                parse_uuid(user_id)
            )
        if not row:
            raise NotificationNotFoundError(f"Notification {notification_id} not found")
        return serialize_notification(row)

    async def mark_all_read(self, user_id: str) -> int:
        """Mark every unread notification of a user as read.

        Returns:
            Number of notifications changed
        """
        user_uuid = parse_uuid(user_id)
        if not user_uuid:
            raise NotificationError(f"Invalid user id: {user_id}")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                'UPDATE notifications SET is_read = true WHERE user_id = $1 AND NOT is_read',
                user_uuid
            )
        return command_count(status)

    async def delete_notification(self, notification_id: str, user_id: Optional[str] = None) -> None:
        """Delete a notification, optionally only if user_id owns it.

        Raises:
            NotificationNotFoundError: If the notification doesn't exist
        """
        notification_uuid = parse_uuid(notification_id)
        if not notification_uuid:
            raise NotificationNotFoundError(f"Notification {notification_id} not found")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                'DELETE FROM notifications WHERE id = $1 AND ($2::uuid IS NULL OR user_id = $2)',
                notification_uuid,
                parse_uuid(user_id)
            )
        if command_count(status) == 0:
            raise NotificationNotFoundError(f"Notification {notification_id} not found")

# Create global instance
manager = NotificationManager()

__all__ = [
    'manager',
    'NotificationManager',
    'NOTIFICATION_TYPES',
    'should_deliver',
    'user_room',
    'serialize_notification',
    'NotificationError',
    'NotificationNotFoundError'
]
