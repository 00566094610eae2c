import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials, HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from app.config import settings
from app.errors import AuthenticationError, ConfigurationError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Auth"])

basic_scheme = HTTPBasic(auto_error=False)
bearer_scheme = HTTPBearer(auto_error=False)

class User(BaseModel):
    username: str

class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in: int

def _signing_key() -> str:
    if settings.JWT_SECRET_KEY is None or not settings.JWT_SECRET_KEY.get_secret_value():
        raise ConfigurationError("Token signing is not configured")
    return settings.JWT_SECRET_KEY.get_secret_value()

def verify_credentials(username: str, password: str) -> bool:
    """Constant-time check against the configured API credentials."""
    if not settings.API_USERNAME or settings.API_PASSWORD is None:
        raise ConfigurationError("API credentials are not configured")
    user_ok = secrets.compare_digest(username.encode(), settings.API_USERNAME.encode())
    pass_ok = secrets.compare_digest(password.encode(), settings.API_PASSWORD.get_secret_value().encode())
    return user_ok and pass_ok

def create_access_token(username: str, expires_minutes: Optional[int] = None) -> str:
    expires = timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    now = datetime.now(timezone.utc)
    claims = {"sub": username, "iat": now, "exp": now + expires}
    return jwt.encode(claims, _signing_key(), algorithm=settings.JWT_ALGORITHM)

def decode_access_token(token: str) -> User:
    try:
        claims = jwt.decode(token, _signing_key(), algorithms=[settings.JWT_ALGORITHM])
    except jwt.InvalidTokenError as e:
        raise AuthenticationError("Unauthorized: Invalid token") from e
    return User(username=claims.get("sub", ""))

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    token: Optional[str] = Query(default=None),
) -> User:
    """Bearer token from the Authorization header, or ``?token=``."""
    raw = credentials.credentials if credentials else token
    if not raw:
        raise AuthenticationError("Unauthorized: No token provided. Request one from /getToken and send it as a Bearer token")
    return decode_access_token(raw)

@router.get("/getToken", response_model=TokenResponse)
async def get_token(credentials: Optional[HTTPBasicCredentials] = Depends(basic_scheme)):
    if not credentials or not verify_credentials(credentials.username, credentials.password):
        logger.warning("Rejected token request with invalid credentials")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized: Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )
    token = create_access_token(credentials.username)
    return {"token": token, "expires_in": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60}
