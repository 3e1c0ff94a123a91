"""Error taxonomy and the result type returned by every scheduling operation.

Errors are raised inside a service module and converted into ``Err`` at its
public boundary, so callers only ever branch on ``Ok`` / ``Err``.
"""
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class SchedulingError(Exception):
    code = "scheduling_error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class NotFoundError(SchedulingError):
    """Referenced doctor, patient or appointment does not exist."""

    code = "not_found"


class ValidationError(SchedulingError):
    """Malformed input: bad interval, misaligned slot, past booking, illegal transition."""

    code = "validation_error"


class DataIntegrityError(SchedulingError):
    """A stored record breaks its own invariants (e.g. overlapping template intervals)."""

    code = "data_integrity_error"


class ConflictError(SchedulingError):
    """The slot collided with a concurrent booking or a freshly added block.

    Retryable by the client: re-fetch availability and resubmit.
    """

    code = "conflict"
    retryable = True


class PermissionDeniedError(SchedulingError):
    code = "permission_denied"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    error: SchedulingError

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]
