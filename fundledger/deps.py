# deps.py
# Dependency injections for routes: database session and acting identity.

from typing import Annotated, AsyncGenerator, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from .actor import SYSTEM_ACTOR_ID, Actor
from .database import SessionLocal


# -----------------------
#  DATABASE DEPENDENCY
# -----------------------
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session

SessionDep = Annotated[AsyncSession, Depends(get_db)]


# -----------------------
#  ACTING IDENTITY
# -----------------------
async def get_current_actor(
    x_actor_id: Annotated[Optional[str], Header(alias="X-Actor-Id")] = None,
) -> Actor:
    """
    Identity of the admin making the request, taken from the X-Actor-Id header
    set by the authenticating gateway. The system identity is reserved for
    background jobs and cannot be claimed over HTTP.
    """
    actor_id = (x_actor_id or "").strip()
    if not actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Actor-Id header",
        )
    if actor_id == SYSTEM_ACTOR_ID:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="The system identity cannot be used by API callers",
        )
    return Actor(id=actor_id)

ActorDep = Annotated[Actor, Depends(get_current_actor)]
