"""FastAPI dependencies for credential checks and DB sessions."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from modelrouter.core.config import get_settings
from modelrouter.core.database import get_session
from modelrouter.core.security import secrets_match

api_key_scheme = APIKeyHeader(name="x-api-key", auto_error=False)
admin_scheme = HTTPBearer(auto_error=False)


class AuthContext:
    """Resolved caller identity carried through a request."""

    __slots__ = ("kind",)

    def __init__(self, kind: str) -> None:
        self.kind = kind  # "client" or "admin"


async def require_api_key(
    api_key: Annotated[str | None, Depends(api_key_scheme)],
) -> AuthContext:
    """Client credential: the shared models API key in ``x-api-key``."""
    if not secrets_match(api_key, get_settings().models_api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized - invalid API key",
        )
    return AuthContext(kind="client")


async def require_admin(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(admin_scheme)],
) -> AuthContext:
    """Operator credential: ``Authorization: Bearer <ADMIN_SECRET>``."""
    raw = credentials.credentials if credentials else None
    if not secrets_match(raw, get_settings().admin_secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized - invalid admin secret",
        )
    return AuthContext(kind="admin")


# Typed shorthand for use in route signatures
ClientAuth = Annotated[AuthContext, Depends(require_api_key)]
AdminAuth = Annotated[AuthContext, Depends(require_admin)]
Session = Annotated[AsyncSession, Depends(get_session)]
