"""Per-request caller identity, passed explicitly into every scheduling call."""

from dataclasses import dataclass, field
from datetime import datetime

from backend.models.user import ROLE_ADMIN, ROLE_DOCTOR, ROLE_PATIENT
from backend.scheduling.timeslots import utcnow

CAPACITY_PATIENT = 'patient'
CAPACITY_PROVIDER = 'provider'
CAPACITY_ADMIN = 'admin'


@dataclass(frozen=True)
class Principal:
    user_id: int
    role: str
    hospital_id: int | None = None


@dataclass(frozen=True)
class RequestContext:
    principal: Principal
    now: datetime = field(default_factory=utcnow)


def capacities(principal: Principal, provider, patient_id: int | None = None) -> set[str]:
    """The capacities in which ``principal`` relates to a provider (and patient).

    An empty set means the caller has no business with the resource at all.
    """
    found: set[str] = set()
    if principal.role == ROLE_PATIENT and patient_id is not None and principal.user_id == patient_id:
        found.add(CAPACITY_PATIENT)
    if principal.role == ROLE_DOCTOR and provider.user_id is not None and provider.user_id == principal.user_id:
        found.add(CAPACITY_PROVIDER)
    if principal.role == ROLE_ADMIN and principal.hospital_id == provider.hospital_id:
        found.add(CAPACITY_ADMIN)
    return found


def is_staff(principal: Principal, provider) -> bool:
    return bool(capacities(principal, provider) & {CAPACITY_PROVIDER, CAPACITY_ADMIN})
