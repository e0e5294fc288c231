"""FastAPI dependencies for owner auth."""

import logging
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from sharegate.auth.jwt import get_subject_from_access

security = HTTPBearer(auto_error=False)
log = logging.getLogger(__name__)


async def get_current_owner(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> str:
    """Resolve Bearer token to the owner id; raise 401 if invalid or missing."""
    if not credentials:
        log.debug("Request missing Bearer token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    owner_id = get_subject_from_access(credentials.credentials)
    if not owner_id:
        log.debug("Invalid or expired access token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return owner_id
