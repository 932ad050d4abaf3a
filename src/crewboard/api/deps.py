from __future__ import annotations

from collections.abc import Generator

from fastapi import Header, HTTPException
from pydantic import ValidationError
from sqlalchemy.orm import Session

from crewboard.db.session import get_db_session
from crewboard.types import Actor


def get_db() -> Generator[Session, None, None]:
    yield from get_db_session()


def get_actor(
    x_actor_id: int | None = Header(default=None),
    x_actor_role: str | None = Header(default=None),
    x_actor_status: str = Header(default="ACTIVE"),
) -> Actor:
    """Actor descriptor forwarded by the identity proxy in trusted headers."""
    if x_actor_id is None or not x_actor_role:
        raise HTTPException(status_code=401, detail="Missing actor headers")
    try:
        return Actor(id=x_actor_id, role=x_actor_role.lower(), status=x_actor_status.upper())
    except ValidationError as exc:
        raise HTTPException(status_code=401, detail="Invalid actor headers") from exc
