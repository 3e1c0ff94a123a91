from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum

from clinicbook.core.config import Settings, settings as default_settings
from clinicbook.core.errors import PermissionDeniedError
from clinicbook.store.base import RecordStore


def utc_now() -> datetime:
    return datetime.now(UTC)


class Role(str, Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


@dataclass(frozen=True)
class SchedulingContext:
    """Everything a scheduling call depends on, passed explicitly.

    ``actor`` is None for trusted internal callers (seed scripts, jobs), which
    skip ownership checks.
    """

    store: RecordStore
    actor: Actor | None = None
    clock: Callable[[], datetime] = utc_now
    settings: Settings = field(default_factory=lambda: default_settings)

    def now(self) -> datetime:
        current = self.clock()
        if current.tzinfo is None:
            current = current.replace(tzinfo=UTC)
        return current

    def as_actor(self, actor: Actor | None) -> "SchedulingContext":
        return replace(self, actor=actor)

    def require_doctor_access(self, doctor_id: str) -> None:
        actor = self.actor
        if actor is None or actor.is_admin:
            return
        if actor.role == Role.DOCTOR and actor.user_id == doctor_id:
            return
        raise PermissionDeniedError("Only the doctor or an admin can change this schedule")
