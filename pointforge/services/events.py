"""Event service — RSVP management and event point distribution."""

import logging

from django.db import transaction
from django.utils import timezone

from pointforge.exceptions import NotFoundError, PreconditionError
from pointforge.gates import Gates
from pointforge.models import Event, Transaction, User
from pointforge.requests import EventAwardRequest
from pointforge.services.ledger import PointLedger
from pointforge.signals import event_points_distributed

logger = logging.getLogger(__name__)


class EventDistributor:
    """
    Awards event points to one guest or to every RSVP'd guest.

    The pool check, the pool decrement and every per-guest award run in one
    database transaction: either all guests are paid or none are.
    """

    def __init__(self, ledger: PointLedger):
        self.ledger = ledger

    def distribute(
        self,
        event_id: int,
        actor: str,
        amount_per_guest: int,
        utorid: str | None = None,
        remark: str = "",
    ) -> list[Transaction]:
        """
        Distribute ``amount_per_guest`` points.

        Args:
            event_id: Event id
            actor: utorid of the organizer or manager awarding points
            amount_per_guest: Points per guest (positive)
            utorid: Single guest to award, or None for all guests
            remark: Remark stored on every award

        Returns:
            Award transactions, one per guest

        Raises:
            ValidationError: Non-positive amount
            NotFoundError: Unknown event or user
            AuthorizationError: Actor is neither organizer nor manager
            PreconditionError: NOT_A_GUEST or EVENT_POOL_EXHAUSTED
        """
        Gates.positive_amount(amount_per_guest)
        awarder = self.ledger.resolve(actor)

        with transaction.atomic(using=self.ledger.using):
            event = self.ledger.lock_event(event_id)
            self.ledger.authorize_event(awarder, event)

            if utorid is None:
                guests = list(event.guests.order_by("pk").values_list("utorid", flat=True))
            else:
                guest = self.ledger.resolve(utorid)
                if not event.guests.filter(pk=guest.id).exists():
                    raise PreconditionError("NOT_A_GUEST", event_id=event.pk, utorid=guest.utorid)
                guests = [guest.utorid]

            Gates.event_pool(event, amount_per_guest * len(guests))

            awards = [
                self.ledger.apply(
                    EventAwardRequest(
                        actor=actor,
                        event_id=event.pk,
                        utorid=guest_utorid,
                        amount=amount_per_guest,
                        remark=remark,
                    )
                )
                for guest_utorid in guests
            ]

        event.refresh_from_db(using=self.ledger.using)
        logger.info(
            "Event #%s distributed %s pts to %d guest(s); %s pts remain",
            event.pk, amount_per_guest, len(awards), event.points_remain,
        )
        event_points_distributed.send(sender=Event, event=event, transactions=awards)
        return awards


class EventService:
    """
    Guest and organizer management for events.

    Capacity bounds the guest set; organizers and guests are disjoint.
    """

    @classmethod
    def _get_event(cls, event_id: int, using: str) -> Event:
        try:
            return Event.objects.using(using).select_for_update().get(pk=event_id)
        except Event.DoesNotExist:
            raise NotFoundError("EVENT_NOT_FOUND", event_id=event_id)

    @classmethod
    def _get_user(cls, utorid: str, using: str) -> User:
        try:
            return User.objects.using(using).get(utorid=utorid)
        except User.DoesNotExist:
            raise NotFoundError("USER_NOT_FOUND", utorid=utorid)

    @classmethod
    def add_guest(cls, event_id: int, utorid: str, now=None, using: str = "default") -> Event:
        """
        RSVP a user to an event.

        Raises:
            NotFoundError: Unknown event or user
            PreconditionError: ALREADY_ORGANIZER, ALREADY_GUEST, EVENT_ENDED,
                EVENT_FULL
        """
        now = now or timezone.now()
        with transaction.atomic(using=using):
            event = cls._get_event(event_id, using)
            user = cls._get_user(utorid, using)

            if event.organizers.filter(pk=user.pk).exists():
                raise PreconditionError("ALREADY_ORGANIZER", event_id=event.pk, utorid=utorid)
            if event.guests.filter(pk=user.pk).exists():
                raise PreconditionError("ALREADY_GUEST", event_id=event.pk, utorid=utorid)
            if event.has_ended(now):
                raise PreconditionError("EVENT_ENDED", event_id=event.pk)
            if event.is_full:
                raise PreconditionError("EVENT_FULL", event_id=event.pk, capacity=event.capacity)

            event.guests.add(user)

        logger.info("Guest %s added to event #%s", utorid, event.pk)
        return event

    @classmethod
    def remove_guest(cls, event_id: int, utorid: str, using: str = "default") -> None:
        """
        Cancel a user's RSVP.

        Raises:
            NotFoundError: Unknown event or user
            PreconditionError: NOT_A_GUEST
        """
        with transaction.atomic(using=using):
            event = cls._get_event(event_id, using)
            user = cls._get_user(utorid, using)
            if not event.guests.filter(pk=user.pk).exists():
                raise PreconditionError("NOT_A_GUEST", event_id=event.pk, utorid=utorid)
            event.guests.remove(user)

        logger.info("Guest %s removed from event #%s", utorid, event.pk)

    @classmethod
    def add_organizer(cls, event_id: int, utorid: str, using: str = "default") -> Event:
        """
        Make a user an organizer of an event.

        Raises:
            NotFoundError: Unknown event or user
            PreconditionError: ALREADY_GUEST, ALREADY_ORGANIZER
        """
        with transaction.atomic(using=using):
            event = cls._get_event(event_id, using)
            user = cls._get_user(utorid, using)
            if event.guests.filter(pk=user.pk).exists():
                raise PreconditionError("ALREADY_GUEST", event_id=event.pk, utorid=utorid)
            if event.organizers.filter(pk=user.pk).exists():
                raise PreconditionError("ALREADY_ORGANIZER", event_id=event.pk, utorid=utorid)
            event.organizers.add(user)

        logger.info("Organizer %s added to event #%s", utorid, event.pk)
        return event
