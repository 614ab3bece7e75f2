"""Admin maintenance of providers, their weekly hours and blackout periods."""

import logging
from contextlib import contextmanager
from datetime import time

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.models.provider import Blackout, Provider
from backend.models.user import ROLE_ADMIN, ROLE_DOCTOR
from backend.scheduling.context import CAPACITY_ADMIN, RequestContext, capacities
from backend.scheduling.errors import NotAuthorized, UnknownProvider
from backend.scheduling.repository import BlackoutRepository, ProviderRepository, UserRepository
from backend.scheduling.timeslots import Interval

logger = logging.getLogger(__name__)


class ProviderDirectory:
    def __init__(self, db: Session):
        self.db = db

    def get(self, provider_id: int) -> Provider:
        provider = ProviderRepository.get(self.db, provider_id)
        if provider is None:
            raise UnknownProvider(provider_id)
        return provider

    def create(
        self,
        ctx: RequestContext,
        name: str,
        slot_minutes: int,
        timezone: str = 'UTC',
        user_id: int | None = None,
        specialty: str | None = None,
    ) -> Provider:
        principal = ctx.principal
        if principal.role != ROLE_ADMIN or principal.hospital_id is None:
            raise NotAuthorized()
        if user_id is not None:
            doctor = UserRepository.get(self.db, user_id)
            # Only a doctor of the same hospital can be linked to a provider.
            if doctor is None or doctor.role != ROLE_DOCTOR or doctor.hospital_id != principal.hospital_id:
                raise NotAuthorized()

        with self._writing():
            provider = ProviderRepository.create(
                self.db,
                hospital_id=principal.hospital_id,
                user_id=user_id,
                name=name,
                specialty=specialty,
                slot_minutes=slot_minutes,
                timezone=timezone,
            )
            self.db.commit()

        self.db.refresh(provider)
        logger.info('Provider %s created in hospital %s.', provider.id, provider.hospital_id)
        return provider

    def set_working_hours(
        self,
        ctx: RequestContext,
        provider_id: int,
        windows: list[tuple[int, time, time]],
    ) -> Provider:
        """Replace the provider's weekly working hours wholesale."""
        provider = self._get_administered(ctx, provider_id)
        with self._writing():
            ProviderRepository.replace_working_hours(self.db, provider, windows)
            self.db.commit()

        self.db.refresh(provider)
        logger.info('Working hours for provider %s replaced (%s windows).', provider.id, len(windows))
        return provider

    def add_blackout(
        self,
        ctx: RequestContext,
        provider_id: int,
        interval: Interval,
        reason: str | None = None,
    ) -> Blackout:
        provider = self._get_administered(ctx, provider_id)
        with self._writing():
            blackout = BlackoutRepository.add(self.db, provider.id, interval, reason)
            self.db.commit()

        self.db.refresh(blackout)
        return blackout

    def remove_blackout(self, ctx: RequestContext, provider_id: int, blackout_id: int) -> None:
        provider = self._get_administered(ctx, provider_id)
        blackout = BlackoutRepository.get(self.db, provider.id, blackout_id)
        if blackout is None:
            raise NotAuthorized()
        with self._writing():
            self.db.delete(blackout)
            self.db.commit()

    def _get_administered(self, ctx: RequestContext, provider_id: int) -> Provider:
        provider = ProviderRepository.get(self.db, provider_id)
        if provider is None or CAPACITY_ADMIN not in capacities(ctx.principal, provider):
            raise NotAuthorized()
        return provider

    @contextmanager
    def _writing(self):
        try:
            yield
        except SQLAlchemyError:
            self.db.rollback()
            raise
