"""FastAPI dependency injection — auth guards.

Tokens are issued by the hosted auth provider; the API only verifies them and
looks the user up in the local ``users`` mirror to read the role.
"""
import os
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from app.db import get_db
from app.models.orm_models import User

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "changethis_use_a_real_secret_in_production_64chars")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Higher rank includes every permission of the lower ones
ROLE_RANK = {"viewer": 0, "staff": 1, "admin": 2}

security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = jwt.decode(credentials.credentials, SECRET_KEY, algorithms=[ALGORITHM])
        user_id: str = payload.get("sub")
        if not user_id:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found or inactive")
    return user


def require_role(role_name: str):
    """
    Factory for role-gated dependencies. Admin passes every gate.

    Usage:
        user: User = Depends(require_role("staff"))
    """
    required = ROLE_RANK[role_name]

    async def _require_role(current_user: User = Depends(get_current_user)) -> User:
        if ROLE_RANK.get(current_user.role, -1) < required:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{role_name} role required",
            )
        return current_user

    return _require_role


async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    """Require admin role. Returns 403 for any other authenticated user."""
    if current_user.role != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return current_user
