from typing import Annotated, Optional
import logging

from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from bakery.database import get_db
from bakery.core.security import TokenUser, verify_access_token


logger = logging.getLogger(__name__)

# Checkout works for guests, so a missing header is not an error here
security = HTTPBearer(auto_error=False)


async def get_optional_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Optional[TokenUser]:
    """Caller identity from the bearer token, or None for guests."""
    if credentials is None:
        return None

    user = verify_access_token(credentials.credentials)
    if user is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_current_user(
    user: Annotated[Optional[TokenUser], Depends(get_optional_user)],
) -> TokenUser:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_staff_user(
    user: Annotated[TokenUser, Depends(get_current_user)],
) -> TokenUser:
    if not user.is_staff:
        logger.warning(f"User {user.id} with role {user.role} denied staff access")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Staff access required",
        )
    return user


def get_catalog_scheduler(request: Request):
    """The running CatalogAvailabilityScheduler, if the app started one."""
    return getattr(request.app.state, "catalog_scheduler", None)


# Type aliases for cleaner dependency injection
DB = Annotated[AsyncSession, Depends(get_db)]
OptionalUser = Annotated[Optional[TokenUser], Depends(get_optional_user)]
CurrentUser = Annotated[TokenUser, Depends(get_current_user)]
StaffUser = Annotated[TokenUser, Depends(get_staff_user)]
