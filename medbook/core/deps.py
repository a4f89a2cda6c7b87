"""FastAPI dependencies for authentication/authorization."""

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from medbook.core.exceptions import InvalidRequest
from medbook.core.security import TokenDecodeError, decode_access_token
from medbook.shared.actors import Actor
from medbook.shared.enums import ActorRole
from medbook.shared.ulid import is_ulid

bearer_scheme = HTTPBearer(auto_error=False)


def _resolve_actor(credentials: HTTPAuthorizationCredentials | None) -> Actor | None:
    if credentials is None:
        return None
    try:
        payload = decode_access_token(credentials.credentials)
    except TokenDecodeError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    actor_id = payload.get("sub")
    if not actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    try:
        role = ActorRole(payload.get("role"))
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token role") from exc
    return Actor(actor_id=actor_id, role=role)


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
) -> Actor:
    actor = _resolve_actor(credentials)
    if actor is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing authentication")
    return actor


def require_role(*roles: ActorRole):
    async def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return actor

    return dependency


require_schedule_manager = require_role(ActorRole.PROVIDER, ActorRole.ADMIN)


def ensure_ulid(value: str, label: str) -> str:
    if not is_ulid(value):
        raise InvalidRequest(f"{label} is not a valid id")
    return value.upper()


def ensure_manages_provider(actor: Actor, provider_id: str) -> None:
    """Providers manage only their own schedule; admins manage any."""
    if actor.is_admin:
        return
    if actor.role is ActorRole.PROVIDER and actor.actor_id == provider_id:
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
