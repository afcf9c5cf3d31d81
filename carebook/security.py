# carebook/security.py
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import get_settings

security_logger = logging.getLogger("security")

bearer_scheme = HTTPBearer(auto_error=False)

PROVIDER_ROLES = ("doctor", "admin")


@dataclass
class ProviderIdentity:
    """Caller identity issued by the external login service."""
    provider_id: int
    role: str


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token"""
    settings = get_settings()
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode.update({
        "exp": expire,
        "type": "access",
        "iat": datetime.now(timezone.utc),
        "jti": secrets.token_urlsafe(16),
    })

    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def verify_token(token: str, token_type: str = "access") -> Optional[Dict[str, Any]]:
    """Verify and decode JWT token"""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])

        if payload.get("type") != token_type:
            return None

        return payload
    except JWTError:
        return None


async def get_current_provider(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> ProviderIdentity:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception

    payload = verify_token(credentials.credentials)
    if payload is None:
        security_logger.warning(f"Rejected token for path: {request.url.path}")
        raise credentials_exception

    try:
        provider_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise credentials_exception

    role = payload.get("role", "doctor")
    if role not in PROVIDER_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    return ProviderIdentity(provider_id=provider_id, role=role)


def verify_cron_secret(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> None:
    """Scheduled-job endpoints accept `Authorization: Bearer <CRON_SECRET>` when a secret is configured."""
    expected = get_settings().cron_secret
    if not expected:
        return
    supplied = credentials.credentials if credentials else ""
    if not hmac.compare_digest(supplied.encode(), expected.encode()):
        security_logger.warning("Rejected cron request with invalid secret")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
