"""
Identity Boundary
=================

Resolves the caller of a request into an ``Identity``.

Token issuance and password handling live outside this service; here we only
verify a signed JWT (``Authorization: Bearer <jwt>`` or the ``token`` cookie),
load the user it names and hand the rest of the app an immutable
``(id, email, role)`` triple. Anything short of that is "unauthenticated".
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union

import jwt
from fastapi import Depends, Header, Cookie
from sqlalchemy.orm import Session

from .config import get_settings
from .db.models import UserRole
from .db.session import get_db
from .errors import AuthenticationRequired
from .store import CaseStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """Verified caller of a single request"""
    id: str
    email: str
    role: Union[UserRole, str]


# =============================================================================
# JWT TOKEN HANDLING
# =============================================================================

def create_access_token(user_id: str, email: Optional[str] = None,
                        expires_delta: Optional[timedelta] = None) -> str:
    """Sign an access token for ``user_id`` (operators and tests)."""
    settings = get_settings()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.jwt_access_token_expire_minutes))
    payload = {"sub": user_id, "exp": expire, "type": "access"}
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT; None if invalid or expired"""
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError as e:
        logger.warning(f"Invalid JWT token: {e.__class__.__name__}")
        return None


def _extract_token(authorization: Optional[str], cookie_token: Optional[str]) -> Optional[str]:
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1].strip()
        if token:
            return token
    return cookie_token or None


def resolve_identity(store: CaseStore, token: Optional[str]) -> Optional[Identity]:
    """
    Turn a raw token into an Identity, or None.

    The user must still exist and be active; a token for a deactivated
    account stops working on the next request.
    """
    if not token:
        return None

    payload = decode_token(token)
    if not payload or payload.get("type", "access") != "access":
        return None

    user_id = payload.get("sub")
    user = store.get_user(user_id) if user_id else None
    if not user or not user.is_active:
        logger.warning(f"Auth failed: user {user_id} not found or inactive")
        return None

    return Identity(id=user.id, email=user.email, role=user.role)


# =============================================================================
# FASTAPI DEPENDENCIES
# =============================================================================

def get_store(db: Session = Depends(get_db)) -> CaseStore:
    """Request-scoped case store"""
    return CaseStore(db)


async def get_identity(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    token: Optional[str] = Cookie(None),
    store: CaseStore = Depends(get_store),
) -> Identity:
    """
    Resolve the caller from either:
    - `Authorization: Bearer <jwt>` (preferred when present)
    - the `token` cookie set by the login frontend
    """
    raw = _extract_token(authorization, token)
    if not raw:
        raise AuthenticationRequired("Authentication required")

    identity = resolve_identity(store, raw)
    if identity is None:
        raise AuthenticationRequired("Invalid or expired token")
    return identity
