"""Recoverable scheduling failures.

None of these are fatal: the caller retries with different input or tells
the user. The HTTP layer translates them in ``backend.routes.http_errors``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from backend.scheduling.timeslots import Interval


class SchedulingError(Exception):
    """Base class for scheduling domain errors."""


class InvalidDuration(SchedulingError):
    pass


class SlotMisaligned(SchedulingError):
    pass


class SlotInPast(SchedulingError):
    pass


class SlotUnavailable(SchedulingError):
    """The requested interval collides with a booking, a blackout or closed hours."""

    def __init__(self, conflict: Interval, alternatives: Sequence[Interval] = ()):
        super().__init__(f'Slot unavailable; conflicts with {conflict.start.isoformat()}-{conflict.end.isoformat()}.')
        self.conflict = conflict
        self.alternatives = list(alternatives)

    def with_alternatives(self, alternatives: Sequence[Interval]) -> SlotUnavailable:
        return SlotUnavailable(self.conflict, alternatives)


class InvalidTransition(SchedulingError):
    def __init__(self, current: str, target: str, reason: str | None = None):
        message = f'Cannot move from {current} to {target}.'
        if reason:
            message = f'{message} {reason}'
        super().__init__(message)
        self.current = current
        self.target = target


class QueueEmpty(SchedulingError):
    def __init__(self, provider_id: int):
        super().__init__(f'No waiting patients for provider {provider_id}.')
        self.provider_id = provider_id


class ProviderBusy(SchedulingError):
    def __init__(self, provider_id: int, serving_entry_id: int):
        super().__init__(f'Provider {provider_id} is already serving queue entry {serving_entry_id}.')
        self.provider_id = provider_id
        self.serving_entry_id = serving_entry_id


class NotAuthorized(SchedulingError):
    def __init__(self):
        super().__init__('Not permitted.')


class UnknownProvider(SchedulingError):
    def __init__(self, provider_id: int):
        super().__init__(f'Provider {provider_id} not found.')
        self.provider_id = provider_id
