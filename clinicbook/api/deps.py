from typing import TypeVar

from fastapi import Depends, Header, HTTPException, Request, status

from clinicbook.core.errors import (
    ConflictError,
    DataIntegrityError,
    Err,
    NotFoundError,
    PermissionDeniedError,
    Result,
    ValidationError,
)
from clinicbook.services.context import Actor, Role, SchedulingContext

T = TypeVar("T")

_STATUS_BY_ERROR = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    DataIntegrityError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ConflictError: status.HTTP_409_CONFLICT,
    PermissionDeniedError: status.HTTP_403_FORBIDDEN,
}


def get_optional_actor(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
    x_user_role: str | None = Header(default=None, alias="X-User-Role"),
) -> Actor | None:
    """Caller identity as forwarded by the auth gateway in front of this service."""
    if not x_user_id or not x_user_role:
        return None
    try:
        role = Role(x_user_role.lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown role: {x_user_role}",
        )
    return Actor(user_id=x_user_id, role=role)


def get_current_actor(actor: Actor | None = Depends(get_optional_actor)) -> Actor:
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id / X-User-Role headers",
        )
    return actor


def get_public_context(request: Request) -> SchedulingContext:
    """Context for read-only endpoints that anyone may call."""
    return SchedulingContext(store=request.app.state.store, clock=request.app.state.clock)


def get_context(request: Request, actor: Actor = Depends(get_current_actor)) -> SchedulingContext:
    return SchedulingContext(store=request.app.state.store, actor=actor, clock=request.app.state.clock)


def unwrap(result: Result[T]) -> T:
    """Return the Ok value or raise the HTTPException matching the error."""
    if isinstance(result, Err):
        error = result.error
        raise HTTPException(
            status_code=_STATUS_BY_ERROR.get(type(error), status.HTTP_400_BAD_REQUEST),
            detail={"code": error.code, "message": error.message, "retryable": error.retryable},
        )
    return result.value
