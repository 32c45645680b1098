"""FastAPI dependency injection helpers."""

from typing import AsyncIterator, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ridehail.domain.enums import Role
from ridehail.domain.errors import AuthError, NotAuthorized
from ridehail.realtime.gateway import RealtimeGateway
from ridehail.realtime.registry import ConnectionRegistry, Identity
from ridehail.services.lifecycle import RideLifecycle
from ridehail.services.presence import PresenceStore

_bearer = HTTPBearer(auto_error=False)


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield an async DB session for read-only endpoints."""
    async with request.app.state.session_factory() as session:
        yield session


def get_lifecycle(request: Request) -> RideLifecycle:
    return request.app.state.lifecycle


def get_presence(request: Request) -> PresenceStore:
    return request.app.state.presence


def get_gateway(request: Request) -> RealtimeGateway:
    return request.app.state.gateway


def get_registry(request: Request) -> ConnectionRegistry:
    return request.app.state.registry


async def get_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Identity:
    if credentials is None:
        raise AuthError("Authentication error: No token provided")
    return await request.app.state.authenticator.verify(credentials.credentials)


async def require_admin(identity: Identity = Depends(get_identity)) -> Identity:
    if identity.role is not Role.ADMIN:
        raise NotAuthorized("Admin access required")
    return identity
