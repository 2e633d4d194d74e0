"""FastAPI dependencies for injection into route handlers."""

import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from staybook.core.auth import subject_from_token
from staybook.services.availability import AvailabilityEngine

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_availability_engine(request: Request) -> AvailabilityEngine:
    """The engine built by create_app(); one per application so its locks are shared."""
    return request.app.state.availability


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


async def get_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str | None:
    """Subject of the bearer token, recorded as assigned_by on allocations.

    Anonymous calls are allowed and yield None; a token that is present but
    invalid is rejected.
    """
    if credentials is None:
        return None
    try:
        return subject_from_token(credentials.credentials)
    except JWTError:
        logger.info("Rejected bearer token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
