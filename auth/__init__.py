"""Authentication module using password credentials and signed JWT sessions.

This module provides:
1. Password hashing and verification (bcrypt)
2. Login by username or email, issuing a signed session token
3. Token verification for HTTP routes and socket handshakes
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError, ExpiredSignatureError
from passlib.context import CryptContext
from config import settings_conf
from database import get_pool

# Configure logging
logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

class AuthError(Exception):
    """Base exception for authentication errors."""
    pass

class InvalidCredentialsError(AuthError):
    """Raised when a login does not match a user and password."""
    pass

class InvalidTokenError(AuthError):
    """Raised when a token is malformed, badly signed or names no user."""
    pass

class SessionExpiredError(AuthError):
    """Raised when a session token has expired."""
    pass

def hash_password(password: str) -> str:
    """Hash a plaintext password."""
    return pwd_context.hash(password)

def verify_password(password: str, password_hash: str) -> bool:
    """Check a plaintext password against a stored hash."""
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        # Malformed stored hash
        return False

def create_access_token(
    user_id: str,
    username: str,
    expires_delta: Optional[timedelta] = None
) -> str:
    """Create a signed session token.

    Args:
        user_id: The user's id, stored as the token subject
        username: The user's name, carried for convenience
        expires_delta: Optional lifetime, defaults to the configured expiry

    Returns:
        Encoded JWT
    """
    if expires_delta is None:
        expires_delta = timedelta(days=settings_conf['jwt_expiry_days'])
    expires_at = datetime.now(timezone.utc) + expires_delta
    return jwt.encode(
        {
            'sub': str(user_id),
            'username': username,
            'exp': int(expires_at.timestamp())
        },
        settings_conf['jwt_secret'],
        algorithm=settings_conf['jwt_algorithm']
    )

def decode_token(token: str) -> Dict[str, Any]:
    """Decode and verify a session token.

    Returns:
        The token payload

    Raises:
        SessionExpiredError: If the token has expired
        InvalidTokenError: If the token is invalid
    """
    try:
        payload = jwt.decode(
            token,
            settings_conf['jwt_secret'],
            algorithms=[settings_conf['jwt_algorithm']]
        )
    except ExpiredSignatureError:
        raise SessionExpiredError("Session has expired")
    except JWTError as e:
        raise InvalidTokenError(f"Invalid token: {str(e)}")

    if not payload.get('sub'):
        raise InvalidTokenError("Token has no subject")
    return payload

class AuthManager:
    """Checks credentials and resolves tokens to users."""

    def __init__(self, pool=None):
        """Initialize auth manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure database pool is available."""
        if not self.pool:
            self.pool = await get_pool()

    async def login(self, identifier: str, password: str) -> Dict[str, Any]:
        """Log in by username or email.

        Args:
            identifier: Username or email
            password: Plaintext password

        Returns:
            Dict containing:
                - token: Session token for future requests
                - user: Public user fields

        Raises:
            InvalidCredentialsError: If no user matches or the password is wrong
        """
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            user = await conn.fetchrow(
                '''
                SELECT id, username, email, password_hash, profile_image
                FROM users
                WHERE lower(email) = lower($1) OR username = $1
                ''',
                identifier.strip()
            )

        if not user or not verify_password(password, user['password_hash']):
            raise InvalidCredentialsError("Invalid credentials")

        token = create_access_token(str(user['id']), user['username'])
        logger.info(f"User {user['username']} logged in")
        return {
            'token': token,
            'user': {
                'id': str(user['id']),
                'username': user['username'],
                'email': user['email'],
                'profile_image': user['profile_image']
            }
        }

    async def verify_token(self, token: str) -> Dict[str, Any]:
        """Resolve a session token to its user.

        Returns:
            Dict with the user's id and username

        Raises:
            SessionExpiredError: If the token has expired
            InvalidTokenError: If the token is invalid or its user no longer exists
        """
        payload = decode_token(token)
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            user = await conn.fetchrow(
                'SELECT id, username FROM users WHERE id::text = $1',
                payload['sub']
            )

        if not user:
            raise InvalidTokenError("User not found")

        return {'id': str(user['id']), 'username': user['username']}

# Create global instance
manager = AuthManager()

# FastAPI security scheme
auth_scheme = HTTPBearer(
    auto_error=True,  # Reject automatically if token is missing
    description="JWT Bearer token required"
)

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme)
) -> Dict[str, Any]:
    """FastAPI dependency for getting the authenticated user.

    Returns:
        Dict with the user's id and username

    Raises:
        HTTPException: If authentication fails
    """
    try:
        return await manager.verify_token(credentials.credentials)
    except SessionExpiredError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session has expired"
        )
    except AuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e)
        )

# Export public interface
__all__ = [
    'manager',
    'get_current_user',
    'hash_password',
    'verify_password',
    'create_access_token',
    'decode_token',
    'AuthError',
    'InvalidCredentialsError',
    'InvalidTokenError',
    'SessionExpiredError'
]
