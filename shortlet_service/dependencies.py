import hmac
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import APIKeyHeader
from fastapi_limiter.depends import RateLimiter
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from . import crud, models
from .config import Settings, settings
from .database import get_db

api_key_header = APIKeyHeader(name="Authorization")


def get_settings() -> Settings:
    return settings


async def get_key_by_user_id_or_ip(request: Request) -> str:
    """
    Tries to get the user ID from the JWT token.
    If it fails (no token, invalid token), it falls back to the client's IP.
    """
    try:
        token = request.headers.get("Authorization")
        scheme, jwt_token = token.split()
        if scheme.lower() != "bearer":
            return request.client.host  # Fallback to IP

        payload = jwt.decode(jwt_token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id = payload.get("sub")

        if user_id:
            return str(user_id)
    except (JWTError, ValueError, AttributeError, TypeError):
        # If token is invalid, missing, or malformed, limit by IP
        pass
    return request.client.host


async def get_current_user_id_from_token(
        token: Annotated[str, Depends(api_key_header)]
) -> int:
    """
    Decodes the JWT from the 'Authorization: Bearer ...' header to get the user ID.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        scheme, jwt_token = token.split()
        if scheme.lower() != "bearer":
            raise credentials_exception
        payload = jwt.decode(jwt_token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id = int(payload.get("sub"))
        return user_id
    except (JWTError, ValueError, AttributeError, TypeError):
        raise credentials_exception


CurrentUserId = Annotated[int, Depends(get_current_user_id_from_token)]


def get_listing_settings_or_404(property_id: int, db: Session = Depends(get_db)) -> models.ShortletSettings:
    row = crud.get_shortlet_settings_row(db, property_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Shortlet listing not found")
    return row


def require_host(row: models.ShortletSettings, user_id: int):
    if row.host_user_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the host can manage this listing")


def verify_webhook_secret(
        x_webhook_secret: Annotated[Optional[str], Header()] = None,
        config: Settings = Depends(get_settings),
):
    """
    Rejects payment webhooks without the shared secret, when one is configured.
    """
    if not config.PAYMENT_WEBHOOK_SECRET:
        return
    if x_webhook_secret is None or not hmac.compare_digest(x_webhook_secret, config.PAYMENT_WEBHOOK_SECRET):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")


create_booking_rate_limit = RateLimiter(times=30, minutes=1, identifier=get_key_by_user_id_or_ip)
read_rate_limit = RateLimiter(times=60, minutes=1, identifier=get_key_by_user_id_or_ip)
