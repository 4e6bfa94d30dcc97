"""
Supplier Credentialing - Authentication Utilities
JWT tokens and the caller-identity dependency.

Users live in the identity service; this API trusts the signed claims:
    sub         user id
    company_id  company the user belongs to
    brand_id    brand the user acts for (optional)
"""
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from .config import get_settings
from .models.identity import AuthUser

ACCESS_TOKEN_EXPIRE_HOURS = 24

# Bearer token security
security = HTTPBearer()


def create_access_token(
    user_id: str,
    company_id: str,
    brand_id: Optional[str] = None,
    expires_in: timedelta = timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS),
) -> str:
    """Create a JWT access token carrying the brand scope."""
    settings = get_settings()
    to_encode = {
        "sub": user_id,
        "company_id": company_id,
        "exp": datetime.utcnow() + expires_in,
    }
    if brand_id:
        to_encode["brand_id"] = brand_id
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT token (signature and expiry)."""
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> AuthUser:
    """
    Dependency to get the current authenticated caller.
    Validates the JWT and builds the identity from its claims.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_token(credentials.credentials)
    if payload is None:
        raise credentials_exception

    user_id = payload.get("sub")
    company_id = payload.get("company_id")
    if not user_id or not company_id:
        raise credentials_exception

    return AuthUser(id=user_id, company_id=company_id, brand_id=payload.get("brand_id"))
