"""
Fare negotiation state machine.

A negotiation starts OPEN with the initiator's proposal and ends ACCEPTED or
REJECTED. Each transition appends exactly one NegotiationEvent and bumps
Negotiation.version, so version always equals the number of events and the
event sequence numbers are 1..version with no gaps.

Transitions are compare-and-swap updates on (status=open, version=v): of two
concurrent transitions from the same version only one commits, the other
gets a StateConflictError (or NotOpenError once the winner closed it).
"""

import logging
from decimal import Decimal, InvalidOperation

from django.db import IntegrityError, transaction
from django.utils import timezone

from accounts.directory import UserDirectory
from rides.models import Negotiation, NegotiationEvent, RideRequest
from services.exceptions import (
    DriverNotFoundError,
    DuplicateNegotiationError,
    NegotiationNotFoundError,
    NotOpenError,
    NotParticipantError,
    RequestNotFoundError,
    RideValidationError,
    SameActorRepeatError,
    StateConflictError,
    storage_guard,
)
from services.pricing import to_money

logger = logging.getLogger(__name__)

MAX_AMOUNT = Decimal('99999999.99')


def validate_amount(amount, field='amount') -> Decimal:
    """Coerce a fare to cents; finite and non-negative or RideValidationError."""
    if isinstance(amount, bool):
        raise RideValidationError({field: 'Must be a number'})
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, TypeError, ValueError):
        raise RideValidationError({field: 'Must be a number'})
    if not value.is_finite():
        raise RideValidationError({field: 'Must be a finite number'})
    if value < 0:
        raise RideValidationError({field: 'Must not be negative'})
    if value > MAX_AMOUNT:
        raise RideValidationError({field: 'Amount is too large'})
    return to_money(value)


def _default_notifier(*args, **kwargs):
    from realtime.notifications import notify
    return notify(*args, **kwargs)


class NegotiationStateMachine:
    """Enforces the open -> accepted/rejected lifecycle of a fare negotiation."""

    def __init__(self, directory=None, notifier=None, clock=None):
        self.directory = directory or UserDirectory()
        self.notifier = notifier or _default_notifier
        self.clock = clock or timezone.now

    # ---------------------- Queries ----------------------

    @storage_guard
    def get(self, negotiation_id) -> Negotiation:
        negotiation = (
            Negotiation.objects
            .select_related('request')
            .filter(id=negotiation_id)
            .first()
        )
        if negotiation is None:
            raise NegotiationNotFoundError(f"Negotiation {negotiation_id} not found")
        return negotiation

    @storage_guard
    def history(self, negotiation_id):
        """Events of a negotiation in sequence order."""
        negotiation = self.get(negotiation_id)
        return list(negotiation.events.all())

    # ---------------------- Transitions ----------------------

    @storage_guard
    def open(self, request_id, driver_id, initiator_id, amount, message='') -> Negotiation:
        """Start a negotiation for (request, driver) with the initiator's proposal."""
        amount = validate_amount(amount)

        ride = RideRequest.objects.filter(id=request_id).first()
        if ride is None:
            raise RequestNotFoundError(f"Ride request {request_id} not found")
        if self.directory.get_driver(driver_id) is None:
            raise DriverNotFoundError(f"Driver {driver_id} not found")
        if initiator_id not in (ride.rider_id, driver_id):
            raise NotParticipantError("Only the rider or the driver can start this negotiation")

        open_exists = Negotiation.objects.filter(
            request_id=request_id, driver_id=driver_id, status=Negotiation.STATUS_OPEN
        ).exists()
        if open_exists:
            raise DuplicateNegotiationError(
                "An open negotiation already exists for this driver",
                current_status=Negotiation.STATUS_OPEN,
            )

        try:
            with transaction.atomic():
                negotiation = Negotiation.objects.create(
                    request=ride,
                    driver_id=driver_id,
                    initiator_id=initiator_id,
                    proposed_fare=amount,
                    status=Negotiation.STATUS_OPEN,
                    version=1,
                )
                NegotiationEvent.objects.create(
                    negotiation=negotiation,
                    sequence=1,
                    kind=NegotiationEvent.KIND_PROPOSAL,
                    actor_id=initiator_id,
                    amount=amount,
                    message=message or '',
                )
        except IntegrityError:
            # Lost the race against a concurrent open for the same pair
            raise DuplicateNegotiationError(
                "An open negotiation already exists for this driver",
                current_status=Negotiation.STATUS_OPEN,
            )

        logger.info(
            "Negotiation %s opened on ride %s: driver=%s initiator=%s fare=%s",
            negotiation.id, request_id, driver_id, initiator_id, amount,
        )
        return negotiation

    @storage_guard
    def counter(self, negotiation_id, actor_id, amount, message='') -> Negotiation:
        """Replace the proposed fare. The same actor cannot counter twice in a row."""
        amount = validate_amount(amount)
        negotiation = self.get(negotiation_id)
        self._check_participant(negotiation, actor_id)
        self._check_open(negotiation)

        last = negotiation.last_event
        if last is not None and last.actor_id == actor_id:
            raise SameActorRepeatError(
                "Wait for the other party to respond before countering again",
                current_status=negotiation.status,
            )

        negotiation = self._commit(
            negotiation,
            kind=NegotiationEvent.KIND_COUNTER,
            actor_id=actor_id,
            amount=amount,
            message=message,
            proposed_fare=amount,
        )
        self.notifier(
            negotiation.counterparty_of(actor_id),
            actor_id,
            'counter_offer',
            f"New counter offer of ${amount} on ride #{negotiation.request_id}",
        )
        return negotiation

    @storage_guard
    def accept(self, negotiation_id, actor_id) -> Negotiation:
        """
        Close the negotiation at the current proposed fare. Only the
        counterparty of whoever named that fare can accept it.
        """
        negotiation = self.get(negotiation_id)
        self._check_participant(negotiation, actor_id)
        self._check_open(negotiation)

        last = negotiation.last_event
        if last is not None and last.actor_id == actor_id:
            raise SameActorRepeatError(
                "You cannot accept your own offer",
                current_status=negotiation.status,
            )

        fare = negotiation.proposed_fare
        negotiation = self._commit(
            negotiation,
            kind=NegotiationEvent.KIND_ACCEPT,
            actor_id=actor_id,
            amount=fare,
            status=Negotiation.STATUS_ACCEPTED,
            accepted_fare=fare,
            closed_at=self.clock(),
        )
        self.notifier(
            negotiation.counterparty_of(actor_id),
            actor_id,
            'offer_accepted',
            f"Fare of ${fare} accepted for ride #{negotiation.request_id}",
        )
        return negotiation

    @storage_guard
    def reject(self, negotiation_id, actor_id, reason=None) -> Negotiation:
        """
        Close the negotiation without agreement. Either participant may
        reject, so the last proposer can also withdraw their offer.
        """
        negotiation = self.get(negotiation_id)
        self._check_participant(negotiation, actor_id)
        self._check_open(negotiation)

        negotiation = self._commit(
            negotiation,
            kind=NegotiationEvent.KIND_REJECT,
            actor_id=actor_id,
            amount=negotiation.proposed_fare,
            message=reason,
            status=Negotiation.STATUS_REJECTED,
            closed_at=self.clock(),
        )
        text = f"Offer on ride #{negotiation.request_id} was rejected"
        if reason:
            text = f"{text}: {reason}"
        self.notifier(negotiation.counterparty_of(actor_id), actor_id, 'offer_rejected', text)
        return negotiation

    # ---------------------- Internals ----------------------

    @staticmethod
    def _check_participant(negotiation, actor_id):
        if not negotiation.is_participant(actor_id):
            raise NotParticipantError("Only the rider or the driver can act on this negotiation")

    @staticmethod
    def _check_open(negotiation):
        if not negotiation.is_open:
            raise NotOpenError(
                f"Negotiation is already {negotiation.status}",
                current_status=negotiation.status,
            )

    def _commit(self, negotiation, kind, actor_id, amount, message='', **changes) -> Negotiation:
        """
        Apply `changes` and append one event, if and only if the negotiation is
        still open at the version the caller read.
        """
        expected = negotiation.version
        sequence = expected + 1

        with transaction.atomic():
            updated = (
                Negotiation.objects
                .filter(id=negotiation.id, status=Negotiation.STATUS_OPEN, version=expected)
                .update(version=sequence, updated_at=self.clock(), **changes)
            )
            if not updated:
                current = (
                    Negotiation.objects
                    .filter(id=negotiation.id)
                    .values_list('status', flat=True)
                    .first()
                )
                if current != Negotiation.STATUS_OPEN:
                    raise NotOpenError(f"Negotiation is already {current}", current_status=current)
                raise StateConflictError(
                    "Negotiation changed concurrently, re-fetch and retry",
                    current_status=current,
                )

            NegotiationEvent.objects.create(
                negotiation_id=negotiation.id,
                sequence=sequence,
                kind=kind,
                actor_id=actor_id,
                amount=amount,
                message=message or '',
            )

        negotiation.refresh_from_db()
        logger.info("Negotiation %s: %s by %s at %s (v%s)", negotiation.id, kind, actor_id, amount, sequence)
        return negotiation
