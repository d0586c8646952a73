"""
FastAPI dependencies for authentication and service wiring.

This module provides dependency functions for JWT authentication, the
settings and session factory resolved at the composition root, and the
order service built from them.
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gigmarket.core.config import Settings, get_settings
from gigmarket.core.logging import get_logger, set_actor_id
from gigmarket.core.security import TokenError, decode_token, verify_token_type
from gigmarket.database.connection import get_session_factory
from gigmarket.services.orders.service import OrderService
from gigmarket.services.orders.state_machine import Actor
from gigmarket.services.users.repository import UserRepository

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


def get_settings_dep() -> Settings:
    return get_settings()


def get_session_factory_dep() -> async_sessionmaker[AsyncSession]:
    return get_session_factory()


SettingsDep = Annotated[Settings, Depends(get_settings_dep)]
SessionFactoryDep = Annotated[
    async_sessionmaker[AsyncSession], Depends(get_session_factory_dep)
]


def get_order_service(
    settings: SettingsDep,
    session_factory: SessionFactoryDep,
) -> OrderService:
    return OrderService(session_factory, settings)


async def get_current_actor(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    settings: SettingsDep,
    session_factory: SessionFactoryDep,
) -> Actor:
    """
    Validate the bearer token and resolve the acting user.

    Returns:
        Actor: Authenticated actor

    Raises:
        HTTPException: 401 if the token is invalid or the user unknown,
            403 if the account is inactive
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        logger.warning("Authentication failed: No credentials provided")
        raise credentials_exception

    try:
        payload = decode_token(credentials.credentials, settings)
    except TokenError as e:
        logger.warning(
            "Authentication failed: token rejected",
            error=str(e),
            error_code=e.code,
        )
        raise credentials_exception

    if not verify_token_type(payload, "access"):
        raise credentials_exception

    user_id: Optional[str] = payload.get("sub")
    if not user_id:
        logger.warning("Authentication failed: Token missing 'sub' claim")
        raise credentials_exception

    async with session_factory() as session:
        user = await UserRepository(session).find_user_by_id(user_id)

    if user is None:
        logger.warning("Authentication failed: User not found", user_id=user_id)
        raise credentials_exception

    if not user.is_active:
        logger.warning("Authentication failed: User account is inactive", user_id=user_id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user account",
        )

    set_actor_id(user.id)
    logger.debug("User authenticated", user_id=user.id, is_admin=user.is_admin)

    return Actor(user_id=user.id, is_admin=user.is_admin, is_seller=user.is_seller)


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
