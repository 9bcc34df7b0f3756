from fastapi import Depends, HTTPException, status
from fastapi_users import models

from .services.identity import Identity
from .users import fastapi_users


# Dependency to get the currently authenticated user (None for anonymous callers)
async def get_current_user(
    user: models.UP = Depends(fastapi_users.current_user(optional=True, active=True)),
):
    return user


async def get_identity(user: models.UP = Depends(get_current_user)) -> Identity:
    return Identity.from_user(user)


# Dependency to enforce authentication (non-admin user is OK)
async def require_authenticated_user(user: models.UP = Depends(get_current_user)):
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user


async def require_admin_user(user: models.UP = Depends(require_authenticated_user)):
    if not getattr(user, "is_superuser", False):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user
