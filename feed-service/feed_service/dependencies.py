"""
FastAPI dependencies for Feed Service
"""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from typing import Optional

from .backend_client import BackendClient, get_backend_client
from .config import settings
from .schemas import User

security = HTTPBearer()


def decode_session_token(token: str) -> User:
    """
    Validate a backend session token and return its user

    Raises:
        HTTPException: 401 if the token is invalid or has no subject
    """
    try:
        payload = jwt.decode(
            token,
            settings.BACKEND_JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_aud": False},
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return User(id=str(user_id), email=payload.get("email"), role=payload.get("role"))


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> User:
    """
    Validate session token and return current user
    """
    return decode_session_token(credentials.credentials)


async def get_current_user_optional(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(HTTPBearer(auto_error=False))
) -> Optional[User]:
    """
    Optional authentication - returns None if no token provided
    """
    if not credentials:
        return None

    try:
        return decode_session_token(credentials.credentials)
    except HTTPException:
        return None


async def get_session_client(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(HTTPBearer(auto_error=False)),
    backend: BackendClient = Depends(get_backend_client),
) -> BackendClient:
    """Backend client acting with the caller's session, so row-level security applies"""
    token = credentials.credentials if credentials else None
    if token:
        try:
            decode_session_token(token)
        except HTTPException:
            # Same caller get_current_user_optional treats as anonymous
            token = None
    return backend.with_token(token)
