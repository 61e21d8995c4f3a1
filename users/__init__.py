"""Users module for managing accounts, settings and social lists.

This module provides functionality for:
- Creating, reading, updating and deleting users
- Resolving users by id, username or email
- Managing friends and blocked users
- Reading and updating preferences
"""

import logging
import re
import uuid
from typing import Dict, List, Optional, Any

import asyncpg

from auth import hash_password
from database import get_pool

logger = logging.getLogger(__name__)

# Fields a PATCH on a user may touch
MUTABLE_FIELDS = {
    'username',
    'email',
    'password',
    'profile_image',
    'settings'
}

LANGUAGES = {'es', 'en'}

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')

# Nested preference keys mapped to their columns
PREFERENCE_COLUMNS = {
    ('notifications', 'trades'): 'notify_trades',
    ('notifications', 'messages'): 'notify_messages',
    ('notifications', 'friend_requests'): 'notify_friend_requests',
    ('privacy', 'show_collection'): 'show_collection',
    ('privacy', 'show_wishlist'): 'show_wishlist'
}

USER_COLUMNS = '''
    id, username, email, profile_image, language, dark_mode,
    notify_trades, notify_messages, notify_friend_requests,
    show_collection, show_wishlist, created_at, updated_at
'''

class UserError(Exception):
    """Base exception for user operations."""
    pass

class UserNotFoundError(UserError):
    """Raised when a user is not found."""
    pass

class UserExistsError(UserError):
    """Raised when a username or email is already taken."""
    pass

class InvalidUserDataError(UserError):
    """Raised when user fields fail validation."""
    pass

def parse_uuid(value: Any) -> Optional[uuid.UUID]:
    """Return value as a UUID, or None if it is not one."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        return None

async def resolve_user_id(
    conn,
    identifier: Any,
    allow_email: bool = False
) -> Optional[uuid.UUID]:
    """Resolve an identifier to a user id.

    The identifier is tried as a UUID first, then as a username and, when
    allow_email is set, as an email address.

    Args:
        conn: Database connection
        identifier: User id, username or email
        allow_email: Whether to also match by email

    Returns:
        The user's id, or None if no user matches
    """
    user_uuid = parse_uuid(identifier)
    if user_uuid:
        return await conn.fetchval('SELECT id FROM users WHERE id = $1', user_uuid)

    if allow_email:
        return await conn.fetchval(
            'SELECT id FROM users WHERE username = $1 OR email = lower($1)',
            str(identifier).strip()
        )
    return await conn.fetchval(
        'SELECT id FROM users WHERE username = $1',
        str(identifier).strip()
    )

def serialize_preferences(row) -> Dict[str, Any]:
    """Build the nested settings dict from a users row."""
    return {
        'language': row['language'],
        'dark_mode': row['dark_mode'],
        'notifications': {
            'trades': row['notify_trades'],
            'messages': row['notify_messages'],
            'friend_requests': row['notify_friend_requests']
        },
        'privacy': {
            'show_collection': row['show_collection'],
            'show_wishlist': row['show_wishlist']
        }
    }

def preference_updates(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten a (possibly partial) nested settings dict into column updates.

    Raises:
        InvalidUserDataError: If a value is invalid or a key is unknown
    """
    columns: Dict[str, Any] = {}

    for key, value in settings.items():
        if key == 'language':
            if value not in LANGUAGES:
                raise InvalidUserDataError(f"Unsupported language: {value}")
            columns['language'] = value
        elif key == 'dark_mode':
            columns['dark_mode'] = bool(value)
        elif key in ('notifications', 'privacy'):
            if not isinstance(value, dict):
                raise InvalidUserDataError(f"{key} must be an object")
            for sub_key, sub_value in value.items():
                column = PREFERENCE_COLUMNS.get((key, sub_key))
                if not column:
                    raise InvalidUserDataError(f"Unknown setting: {key}.{sub_key}")
                columns[column] = bool(sub_value)
        else:
            raise InvalidUserDataError(f"Unknown setting: {key}")

    return columns

class UserManager:
    """Manager class for handling user operations."""

    def __init__(self, pool=None):
        """Initialize the user manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    def _validate_fields(self, username: Optional[str] = None, email: Optional[str] = None) -> None:
        if username is not None and not username.strip():
            raise InvalidUserDataError("Username cannot be empty")
        if email is not None and not EMAIL_PATTERN.match(email.strip()):
            raise InvalidUserDataError("Invalid email format")

    async def _serialize(self, conn, row) -> Dict[str, Any]:
        friends = await conn.fetch(
            '''
            SELECT u.id, u.username, u.email
            FROM user_friends f JOIN users u ON u.id = f.friend_id
            WHERE f.user_id = $1
            ORDER BY f.created_at
            ''',
            row['id']
        )
        blocked = await conn.fetch(
            '''
            SELECT u.id, u.username, u.email
            FROM user_blocked b JOIN users u ON u.id = b.blocked_id
            WHERE b.user_id = $1
            ORDER BY b.created_at
            ''',
            row['id']
        )
        return {
            'id': str(row['id']),
            'username': row['username'],
            'email': row['email'],
            'profile_image': row['profile_image'],
            'settings': serialize_preferences(row),
            'friends': [
                {'id': str(f['id']), 'username': f['username'], 'email': f['email']}
                for f in friends
            ],
            'blocked_users': [
                {'id': str(b['id']), 'username': b['username'], 'email': b['email']}
                for b in blocked
            ],
            'created_at': row['created_at'].isoformat() if row['created_at'] else None,
            'updated_at': row['updated_at'].isoformat() if row['updated_at'] else None
        }

    async def create_user(self, username: str, email: str, password: str) -> Dict[str, Any]:
        """Create a new user.

        Args:
            username: Unique username
            email: Unique email, stored lowercase
            password: Plaintext password, stored hashed

        Returns:
            The created user

        Raises:
            InvalidUserDataError: If a field is invalid
            UserExistsError: If the username or email is taken
        """
        self._validate_fields(username, email)
        if not password:
            raise InvalidUserDataError("Password is required")

        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f'''
                    INSERT INTO users (username, email, password_hash)
                    VALUES ($1, $2, $3)
                    RETURNING {USER_COLUMNS}
                    ''',
                    username.strip(),
                    email.strip().lower(),
                    hash_password(password)
                )
                logger.info(f"Created user {row['username']}")
                return await self._serialize(conn, row)
        except asyncpg.UniqueViolationError:
            raise UserExistsError("Username or email already exists")

    async def list_users(self) -> List[Dict[str, Any]]:
        """Get all users, newest first."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f'SELECT {USER_COLUMNS} FROM users ORDER BY created_at DESC'
            )
            return [await self._serialize(conn, row) for row in rows]

    async def get_user(self, identifier: str) -> Dict[str, Any]:
        """Get a user by id or username.

        Raises:
            UserNotFoundError: If no user matches
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            user_id = await resolve_user_id(conn, identifier)
            if not user_id:
                raise UserNotFoundError(f"User {identifier} not found")
            row = await conn.fetchrow(
                f'SELECT {USER_COLUMNS} FROM users WHERE id = $1',
                user_id
            )
            return await self._serialize(conn, row)

    async def update_user(self, identifier: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Update a user's account fields.

        Args:
            identifier: User id or username
            updates: Fields to update, restricted to MUTABLE_FIELDS

        Returns:
            The updated user

        Raises:
            UserError: If updates contain fields outside MUTABLE_FIELDS
            InvalidUserDataError: If a value is invalid
            UserNotFoundError: If no user matches
            UserExistsError: If the new username or email is taken
        """
        invalid_fields = set(updates.keys()) - MUTABLE_FIELDS
        if invalid_fields:
            raise UserError(f"Cannot update fields: {sorted(invalid_fields)}")

        columns: Dict[str, Any] = {}
        if 'username' in updates:
            self._validate_fields(username=updates['username'])
            columns['username'] = updates['username'].strip()
        if 'email' in updates:
            self._validate_fields(email=updates['email'])
            columns['email'] = updates['email'].strip().lower()
        if 'password' in updates:
            if not updates['password']:
                raise InvalidUserDataError("Password cannot be empty")
            columns['password_hash'] = hash_password(updates['password'])
        if 'profile_image' in updates:
            columns['profile_image'] = updates['profile_image'] or ''
        if updates.get('settings'):
            columns.update(preference_updates(updates['settings']))

        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                user_id = await resolve_user_id(conn, identifier)
                if not user_id:
                    raise UserNotFoundError(f"User {identifier} not found")

                if columns:
                    fields = [f"{column} = ${i}" for i, column in enumerate(columns, start=1)]
                    await conn.execute(
                        f'''
                        UPDATE users
                        SET {', '.join(fields)}
                        WHERE id = ${len(columns) + 1}
                        ''',
                        *columns.values(),
                        user_id
                    )

                row = await conn.fetchrow(
                    f'SELECT {USER_COLUMNS} FROM users WHERE id = $1',
                    user_id
                )
                return await self._serialize(conn, row)
        except asyncpg.UniqueViolationError:
            raise UserExistsError("Username or email already exists")

    async def delete_user(self, identifier: str) -> Dict[str, Any]:
        """Delete a user.

        The user's cards, trades and notifications are left in place.

        Returns:
            The deleted user

        Raises:
            UserNotFoundError: If no user matches
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                user_id = await resolve_user_id(conn, identifier)
                if not user_id:
                    raise UserNotFoundError(f"User {identifier} not found")
                row = await conn.fetchrow(
                    f'SELECT {USER_COLUMNS} FROM users WHERE id = $1',
                    user_id
                )
                user = await self._serialize(conn, row)
                await conn.execute('DELETE FROM users WHERE id = $1', user_id)
                logger.info(f"Deleted user {user['username']}")
                return user

    async def _modify_relation(
        self,
        table: str,
        column: str,
        identifier: str,
        other_identifier: str,
        add: bool
    ) -> Dict[str, Any]:
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            user_id = await resolve_user_id(conn, identifier)
            other_id = await resolve_user_id(conn, other_identifier)
            if not user_id or not other_id:
                raise UserNotFoundError("User or target not found")
            if user_id == other_id:
                raise InvalidUserDataError("A user cannot target themselves")

            if add:
                await conn.execute(
                    f'''
                    INSERT INTO {table} (user_id, {column})
                    VALUES ($1, $2)
                    ON CONFLICT DO NOTHING
                    ''',
                    user_id,
                    other_id
                )
            else:
                await conn.execute(
                    f'DELETE FROM {table} WHERE user_id = $1 AND {column} = $2',
                    user_id,
                    other_id
                )

            row = await conn.fetchrow(
                f'SELECT {USER_COLUMNS} FROM users WHERE id = $1',
                user_id
            )
            return await self._serialize(conn, row)

    async def add_friend(self, identifier: str, friend_identifier: str) -> Dict[str, Any]:
        """Add a friend to a user's list. Adding an existing friend is a no-op."""
        return await self._modify_relation('user_friends', 'friend_id', identifier, friend_identifier, True)

    async def remove_friend(self, identifier: str, friend_identifier: str) -> Dict[str, Any]:
        """Remove a friend from a user's list."""
        return await self._modify_relation('user_friends', 'friend_id', identifier, friend_identifier, False)

    async def block_user(self, identifier: str, blocked_identifier: str) -> Dict[str, Any]:
        """Add a user to another user's blocked list."""
        return await self._modify_relation('user_blocked', 'blocked_id', identifier, blocked_identifier, True)

    async def unblock_user(self, identifier: str, blocked_identifier: str) -> Dict[str, Any]:
        """Remove a user from another user's blocked list."""
        return await self._modify_relation('user_blocked', 'blocked_id', identifier, blocked_identifier, False)

    async def get_preferences(self, user_id: str) -> Dict[str, Any]:
        """Get a user's settings.

        Raises:
            UserNotFoundError: If no user matches
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            resolved = await resolve_user_id(conn, user_id)
            if not resolved:
                raise UserNotFoundError(f"User {user_id} not found")
            row = await conn.fetchrow(
                f'SELECT {USER_COLUMNS} FROM users WHERE id = $1',
                resolved
            )
            return serialize_preferences(row)

    async def update_preferences(self, user_id: str, settings: Dict[str, Any]) -> Dict[str, Any]:
        """Merge a partial settings dict into a user's settings.

        Returns:
            The full settings after the update

        Raises:
            InvalidUserDataError: If a setting is unknown or invalid
            UserNotFoundError: If no user matches
        """
        columns = preference_updates(settings)
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            resolved = await resolve_user_id(conn, user_id)
            if not resolved:
                raise UserNotFoundError(f"User {user_id} not found")
            if columns:
                fields = [f"{column} = ${i}" for i, column in enumerate(columns, start=1)]
                await conn.execute(
                    f"UPDATE users SET {', '.join(fields)} WHERE id = ${len(columns) + 1}",
                    *columns.values(),
                    resolved
                )
            row = await conn.fetchrow(
                f'SELECT {USER_COLUMNS} FROM users WHERE id = $1',
                resolved
            )
            return serialize_preferences(row)

# Create global instance
manager = UserManager()

__all__ = [
    'manager',
    'UserManager',
    'resolve_user_id',
    'parse_uuid',
    'preference_updates',
    'serialize_preferences',
    'MUTABLE_FIELDS',
    'UserError',
    'UserNotFoundError',
    'UserExistsError',
    'InvalidUserDataError'
]
