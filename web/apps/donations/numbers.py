"""Durable donation number allocation.

Numbers look like ``786-100000042``: a fixed prefix followed by an 8-digit,
zero-padded sequence value. The sequence lives in a counter row that is
bumped with a single atomic ``UPDATE``; the formatted number is then
claimed by inserting it into ``issued_numbers`` whose unique index
detects collisions (for example with numbers imported from an older
system). A collision is retried with the next sequence value.

Each step runs in its own short transaction so no lock is held across the
rest of the request, and a failed claim never rolls the counter back.
"""

import logging

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F

from .errors import DonationNumberUnavailable
from .models import DonationModel, DonationNumberCounter, IssuedNumber, OrderModel

logger = logging.getLogger("donations.numbers")

COUNTER_NAME = "donation"


def format_number(prefix: str, value: int) -> str:
    return f"{prefix}{value:08d}"


class DonationNumberGenerator:
    """Store-backed allocator of unique donation/order numbers."""

    def __init__(self, prefix: str | None = None, max_attempts: int | None = None, counter: str = COUNTER_NAME):
        self.prefix = prefix or getattr(settings, "DONATION_NUMBER_PREFIX", "786-1")
        self.max_attempts = max_attempts or getattr(settings, "DONATION_NUMBER_MAX_ATTEMPTS", 15)
        self.counter = counter

    def _next_value(self) -> int:
        with transaction.atomic():
            updated = DonationNumberCounter.objects.filter(name=self.counter).update(value=F("value") + 1)
            if not updated:
                try:
                    # Savepoint: a concurrent first use may create the row under us
                    with transaction.atomic():
                        DonationNumberCounter.objects.create(name=self.counter, value=1)
                        return 1
                except IntegrityError:
                    DonationNumberCounter.objects.filter(name=self.counter).update(value=F("value") + 1)
            return DonationNumberCounter.objects.get(name=self.counter).value

    def _claim(self, number: str) -> bool:
        if OrderModel.objects.filter(order_number=number).exists():
            return False
        if DonationModel.objects.filter(donation_number=number).exists():
            return False
        try:
            with transaction.atomic():
                IssuedNumber.objects.create(number=number)
        except IntegrityError:
            return False
        return True

    def allocate(self) -> str:
        """Return a number never handed out before.

        Raises:
            DonationNumberUnavailable: every attempt collided.
        """
        for attempt in range(1, self.max_attempts + 1):
            number = format_number(self.prefix, self._next_value())
            if self._claim(number):
                return number
            logger.warning(
                "donation number conflict, retrying",
                extra={"number": number, "attempt": attempt},
            )
        logger.error("donation number allocation exhausted", extra={"attempts": self.max_attempts})
        raise DonationNumberUnavailable()
