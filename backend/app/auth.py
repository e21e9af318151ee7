"""Authentication utilities for the ErrandWork backend."""

from datetime import datetime, timedelta, timezone
from typing import Annotated

import bcrypt
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import Settings, get_settings

# Make bearer optional so cron callers can authenticate with X-Cron-Key
security = HTTPBearer(auto_error=False)

CRON_KEY_HEADER = "X-Cron-Key"
ROLES = ("user", "admin")


def hash_secret(secret: str) -> str:
    """Hash a secret (e.g. the cron key) using bcrypt."""
    return bcrypt.hashpw(secret.encode(), bcrypt.gensalt()).decode()


def verify_secret(plain: str, hashed: str) -> bool:
    """Verify a secret against its bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode(), hashed.encode())
    except ValueError:
        # Malformed hash
        return False


def create_access_token(
    user_id: str,
    settings: Settings,
    role: str = "user",
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token for a user."""
    if role not in ROLES:
        raise ValueError(f"Invalid role: {role}")
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expire_minutes)

    to_encode = {
        "sub": user_id,
        "role": role,
        "exp": expire,
        "iat": datetime.now(timezone.utc),
        "type": "access",
    }
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> dict:
    """Decode and validate a JWT token."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
        return payload
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthContext:
    """Who is calling: a marketplace user, an admin, or the scheduler."""

    def __init__(self, user_id: str, role: str = "user"):
        self.user_id = user_id
        self.role = role

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_cron(self) -> bool:
        return self.role == "cron"


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> AuthContext:
    """Get the authenticated user from the bearer token."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated - provide Authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(credentials.credentials, settings)
    user_id = payload.get("sub")
    if not user_id or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )
    role = payload.get("role", "user")
    if role not in ROLES:
        role = "user"
    return AuthContext(user_id=user_id, role=role)


async def get_admin_user(
    user: Annotated[AuthContext, Depends(get_current_user)],
) -> AuthContext:
    """Require an admin token."""
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


async def get_maintenance_caller(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    settings: Annotated[Settings, Depends(get_settings)],
    x_cron_key: Annotated[str | None, Header(alias=CRON_KEY_HEADER)] = None,
) -> AuthContext:
    """Allow the scheduler (X-Cron-Key) or an admin token."""
    if x_cron_key:
        if settings.cron_key_hash and verify_secret(x_cron_key, settings.cron_key_hash):
            return AuthContext(user_id="system:cron", role="cron")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid cron key")

    user = await get_current_user(credentials, settings)
    return await get_admin_user(user)


# Type aliases for dependency injection
CurrentUser = Annotated[AuthContext, Depends(get_current_user)]
AdminUser = Annotated[AuthContext, Depends(get_admin_user)]
MaintenanceCaller = Annotated[AuthContext, Depends(get_maintenance_caller)]
