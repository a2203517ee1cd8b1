"""Booking engine: admission, occupancy transitions and cancellation.

A table is either available or occupied. ``book`` moves it to occupied,
``cancel`` back to available. Both check-then-act sequences run under a
per-table lock and inside one gateway transaction, so concurrent callers
targeting the same table are serialized and a half-applied booking is never
visible.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime

from .entities import MAX_TABLE_NUMERAL, MIN_TABLE_NUMERAL, Client, Reservation, Table
from .errors import Conflict, InvalidArgument, NotFound
from .gateway import Gateway
from .utils.time import to_local_naive

logger = logging.getLogger(__name__)


class TableLocks:
    """One mutex per table numeral, created on first use."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}

    def _lock_for(self, numeral: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(numeral)
            if lock is None:
                lock = self._locks[numeral] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, numeral: int) -> Iterator[None]:
        with self._lock_for(numeral):
            yield


class BookingEngine:
    def __init__(self, gateway: Gateway, clock: Callable[[], datetime] = datetime.now):
        self.gateway = gateway
        self._clock = clock
        self._locks = TableLocks()

    def book(self, client: Client | None, table_numeral: int, when: datetime | None) -> Reservation:
        """Reserves ``table_numeral`` for ``client`` at ``when``.

        Raises InvalidArgument for bad input (before storage is touched),
        NotFound for an unknown table and Conflict when the table is already
        occupied or the slot is already taken.
        """
        when = self._check_booking_args(client, table_numeral, when)

        client_id = client.id
        try:
            with self._locks.hold(table_numeral), self.gateway.transaction():
                table = self.gateway.load_table(table_numeral, for_update=True)
                if table is None:
                    raise NotFound(f"Table {table_numeral} not found.")
                if table.occupied:
                    logger.warning("Rejected booking for table %s: already occupied", table_numeral)
                    raise Conflict("table already occupied")
                if self.gateway.count_reservations_for(table_numeral, when) > 0:
                    logger.warning(
                        "Rejected booking for table %s at %s: duplicate slot", table_numeral, when
                    )
                    raise Conflict("duplicate slot")

                client.save(self.gateway)
                reservation = Reservation.create(client, table, when, now=self._clock()).save(
                    self.gateway
                )
        except Exception:
            # A rolled-back insert must not leave a dangling id on the caller's client.
            client.id = client_id
            raise

        logger.info(
            "Booked reservation %s: table %s for client %s at %s",
            reservation.id, table_numeral, client.id, when,
        )
        return reservation

    def _check_booking_args(self, client, table_numeral, when) -> datetime:
        if client is None:
            raise InvalidArgument("client is required", "client")
        if (
            not isinstance(table_numeral, int)
            or isinstance(table_numeral, bool)
            or not MIN_TABLE_NUMERAL <= table_numeral <= MAX_TABLE_NUMERAL
        ):
            raise InvalidArgument(
                f"table numeral must be between {MIN_TABLE_NUMERAL} and {MAX_TABLE_NUMERAL}",
                "table",
            )
        if when is None:
            raise InvalidArgument("reservation time is required", "time")
        when = to_local_naive(when)
        if when <= self._clock():
            raise InvalidArgument("reservation time must be in the future", "time")
        return when

    def cancel(self, reservation_id: int) -> None:
        """Deletes the reservation and releases its table. Unknown ids raise NotFound."""
        existing = self.gateway.find_reservation(reservation_id)
        if existing is None:
            raise NotFound(f"Reservation {reservation_id} not found.")

        numeral = existing.table_numeral
        with self._locks.hold(numeral), self.gateway.transaction():
            # Re-read under the lock; a concurrent cancel may have won.
            reservation = self.gateway.find_reservation(reservation_id)
            if reservation is None:
                raise NotFound(f"Reservation {reservation_id} not found.")
            # Release the table as it is now, not as it was when the reservation was read.
            table = self.gateway.load_table(numeral, for_update=True)
            if table is not None:
                reservation = reservation.model_copy(update={"table": table})
            reservation.cancel(self.gateway)

        logger.info("Cancelled reservation %s, table %s released", reservation_id, numeral)

    def find(self, reservation_id: int) -> Reservation:
        reservation = self.gateway.find_reservation(reservation_id)
        if reservation is None:
            raise NotFound(f"Reservation {reservation_id} not found.")
        return reservation

    def list(self) -> list[Reservation]:
        return self.gateway.list_reservations()

    def search_by_client_name(self, fragment: str) -> list[Reservation]:
        if not fragment:
            return self.list()
        return self.gateway.list_reservations(name_fragment=fragment)

    def update_table(
        self, numeral: int, capacity: int, exclusive_view: bool | None = None
    ) -> tuple[Table, bool]:
        """Creates or updates a table's capacity and view, keeping its occupancy.

        Returns the stored table and whether it was newly created.
        """
        table = Table(numeral=numeral, capacity=capacity, exclusive_view=exclusive_view)
        with self._locks.hold(numeral), self.gateway.transaction():
            existing = self.gateway.load_table(numeral, for_update=True)
            if existing is not None:
                table.occupied = existing.occupied
            table.save(self.gateway)
        logger.info("Saved table %s (capacity %s)", numeral, capacity)
        return table, existing is None

    def list_available_tables(self) -> list[Table]:
        return Table.list_available(self.gateway)
