"""
Authentication guards - admin JWT bearer tokens and the cron shared secret

Tokens are issued out of band; there is no login flow here.
"""
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from routewise.config.settings import Settings

logger = logging.getLogger(__name__)

# JWT Bearer token
security = HTTPBearer()


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def create_access_token(data: Dict, settings: Settings, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token"""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=24))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str, settings: Settings) -> Dict:
    """Decode and verify a JWT token"""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        logger.warning("JWT verification failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_admin(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    settings: Settings = Depends(get_settings),
) -> Dict:
    """Admin identity from the bearer token; only role=admin tokens pass"""
    payload = decode_access_token(credentials.credentials, settings)
    if not payload.get("sub") or payload.get("role") != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return payload


async def verify_cron_secret(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Scheduled triggers send `Authorization: Bearer <CRON_SECRET>`"""
    expected = settings.CRON_SECRET
    provided = authorization or ""
    if not expected or not hmac.compare_digest(provided, f"Bearer {expected}"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
