"""
Bearer-token authentication shared by the REST and realtime layers.

Tokens are HS256 JWTs whose ``sub`` claim is the user id.  Issuing tokens
belongs to the external identity service; ``create_access_token`` exists for
seeding and tests.  Customer apps may open a socket before logging in: with
``user_type=customer`` a missing or unusable token yields an anonymous
customer identity with a synthetic subject.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from sqlalchemy.exc import SQLAlchemyError

from ridehail.config import settings
from ridehail.domain.enums import Role
from ridehail.domain.errors import AuthError, InfrastructureError
from ridehail.infrastructure.database import SessionFactory
from ridehail.infrastructure.models import UserModel
from ridehail.infrastructure.repositories import UserRepository
from ridehail.realtime.registry import Identity

logger = logging.getLogger(__name__)

ANONYMOUS_USER_TYPE = "customer"


def create_access_token(
    user_id: int, expires_in: timedelta = timedelta(hours=12)
) -> str:
    now = datetime.now(timezone.utc)
    payload = {"sub": str(user_id), "iat": now, "exp": now + expires_in}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def identity_for(user: UserModel) -> Identity:
    return Identity(
        subject=str(user.id),
        role=Role(user.role),
        user_id=user.id,
        email=user.email,
        name=user.full_name,
        parent_driver_id=user.parent_driver_id,
    )


def anonymous_customer() -> Identity:
    return Identity(
        subject=f"customer_{uuid.uuid4().hex}",
        role=Role.CUSTOMER,
        name="Customer",
        anonymous=True,
    )


class Authenticator:
    def __init__(
        self,
        session_factory: SessionFactory,
        secret: str | None = None,
        algorithm: str | None = None,
    ):
        self.session_factory = session_factory
        self.secret = secret or settings.jwt_secret
        self.algorithm = algorithm or settings.jwt_algorithm

    async def authenticate(
        self, token: Optional[str], user_type: Optional[str] = None
    ) -> Identity:
        allow_anonymous = (user_type or "").lower() == ANONYMOUS_USER_TYPE
        if not token:
            if allow_anonymous:
                return anonymous_customer()
            raise AuthError("Authentication error: No token provided")
        try:
            return await self.verify(token)
        except AuthError:
            if allow_anonymous:
                logger.info("Unusable token on customer socket, continuing anonymously")
                return anonymous_customer()
            raise

    async def verify(self, token: str) -> Identity:
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
            user_id = int(payload["sub"])
        except (jwt.PyJWTError, KeyError, TypeError, ValueError) as exc:
            raise AuthError("Authentication error: Invalid token") from exc

        try:
            async with self.session_factory() as session:
                user = await UserRepository(session).get_by_id(user_id)
        except SQLAlchemyError as exc:
            raise InfrastructureError("User store unavailable") from exc

        if user is None or not user.is_active:
            raise AuthError("Authentication error: Invalid user")
        return identity_for(user)
