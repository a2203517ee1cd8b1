"""Persistence gateway used by the booking engine.

:class:`Gateway` is the narrow contract the core depends on. :class:`SqlGateway`
implements it on top of the Flask-SQLAlchemy session.
"""

from __future__ import annotations

import functools
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import ContextManager, Iterator

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import contains_eager, joinedload

from .entities import Client, Reservation, Table
from .errors import Conflict, NotFound, StorageFailure
from .models import ClientRecord, ReservationRecord, TableRecord

logger = logging.getLogger(__name__)


class Gateway(ABC):
    """Storage operations needed by the reservation core."""

    @abstractmethod
    def transaction(self) -> ContextManager[None]:
        """Scope in which every write commits together or not at all."""

    @abstractmethod
    def load_table(self, numeral: int, for_update: bool = False) -> Table | None: ...

    @abstractmethod
    def save_table(self, table: Table) -> None: ...

    @abstractmethod
    def list_tables(self, available_only: bool = False) -> list[Table]: ...

    @abstractmethod
    def load_client(self, client_id: int) -> Client | None: ...

    @abstractmethod
    def save_client(self, client: Client) -> int: ...

    @abstractmethod
    def list_clients(self) -> list[Client]: ...

    @abstractmethod
    def insert_reservation(self, reservation: Reservation) -> int: ...

    @abstractmethod
    def delete_reservation(self, reservation_id: int) -> None: ...

    @abstractmethod
    def find_reservation(self, reservation_id: int) -> Reservation | None: ...

    @abstractmethod
    def list_reservations(self, name_fragment: str | None = None) -> list[Reservation]:
        """Reservations ordered by timestamp, optionally filtered by client name."""

    @abstractmethod
    def count_reservations_for(self, numeral: int, when: datetime) -> int: ...


def _storage_errors(fn):
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except SQLAlchemyError as exc:
            logger.error("Storage call %s failed: %s", fn.__name__, exc)
            raise StorageFailure("Storage is unavailable.", str(exc)) from exc
    return wrapper


def _client(record: ClientRecord) -> Client:
    return Client(id=record.id, name=record.name, phone=record.phone, discount=record.discount)


def _table(record: TableRecord) -> Table:
    return Table(
        numeral=record.numeral,
        capacity=record.capacity,
        occupied=record.occupied,
        exclusive_view=record.exclusive_view if record.vip else None,
    )


def _reservation(record: ReservationRecord) -> Reservation:
    return Reservation.model_validate(
        {
            "id": record.id,
            "client": _client(record.client),
            "table": _table(record.table),
            "timestamp": record.timestamp,
        },
        context={"stored": True},
    )


class SqlGateway(Gateway):
    def __init__(self, db: SQLAlchemy):
        self._db = db
        self._local = threading.local()

    @property
    def _session(self):
        return self._db.session

    @contextmanager
    def transaction(self) -> Iterator[None]:
        # Nested scopes join the outermost one, which alone commits or rolls back.
        depth = getattr(self._local, "depth", 0)
        self._local.depth = depth + 1
        try:
            yield
            if depth == 0:
                self._session.commit()
        except SQLAlchemyError as exc:
            if depth == 0:
                self._session.rollback()
            logger.error("Transaction aborted: %s", exc)
            raise StorageFailure("Transaction aborted.", str(exc)) from exc
        except BaseException:
            if depth == 0:
                self._session.rollback()
            raise
        finally:
            self._local.depth = depth

    @_storage_errors
    def load_table(self, numeral: int, for_update: bool = False) -> Table | None:
        record = self._session.get(
            TableRecord, numeral, with_for_update=for_update, populate_existing=True
        )
        return _table(record) if record else None

    @_storage_errors
    def save_table(self, table: Table) -> None:
        t = TableRecord.__table__
        values = {
            "numeral": table.numeral,
            "capacity": table.capacity,
            "occupied": table.occupied,
            "vip": table.vip,
            "exclusive_view": table.exclusive_view,
        }
        dialect = self._db.engine.dialect.name
        if dialect not in ("postgresql", "sqlite"):
            self._session.merge(TableRecord(**values))
            self._session.flush()
            return

        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        ins = insert(t).values(**values)
        stmt = ins.on_conflict_do_update(
            index_elements=[t.c.numeral],
            set_={name: ins.excluded[name] for name in values if name != "numeral"},
        )
        self._session.execute(stmt)

    @_storage_errors
    def list_tables(self, available_only: bool = False) -> list[Table]:
        q = select(TableRecord).order_by(TableRecord.numeral.asc())
        if available_only:
            q = q.where(TableRecord.occupied.is_(False))
        rows = self._session.scalars(q.execution_options(populate_existing=True)).all()
        return [_table(row) for row in rows]

    @_storage_errors
    def load_client(self, client_id: int) -> Client | None:
        record = self._session.get(ClientRecord, client_id, populate_existing=True)
        return _client(record) if record else None

    @_storage_errors
    def save_client(self, client: Client) -> int:
        if client.id is None:
            record = ClientRecord(
                name=client.name,
                name_folded=client.name.casefold(),
                phone=client.phone,
                discount=client.discount,
            )
            self._session.add(record)
        else:
            record = self._session.get(ClientRecord, client.id)
            if record is None:
                raise NotFound(f"Client {client.id} not found.")
            record.name = client.name
            record.name_folded = client.name.casefold()
            record.phone = client.phone
            record.discount = client.discount
        self._session.flush()
        return record.id

    @_storage_errors
    def list_clients(self) -> list[Client]:
        q = select(ClientRecord).order_by(ClientRecord.name.asc(), ClientRecord.id.asc())
        rows = self._session.scalars(q.execution_options(populate_existing=True)).all()
        return [_client(row) for row in rows]

    @_storage_errors
    def insert_reservation(self, reservation: Reservation) -> int:
        record = ReservationRecord(
            client_id=reservation.client.id,
            table_numeral=reservation.table.numeral,
            timestamp=reservation.timestamp,
        )
        self._session.add(record)
        try:
            self._session.flush()
        except IntegrityError as exc:
            raise Conflict("duplicate slot", str(exc.orig)) from exc
        return record.id

    @_storage_errors
    def delete_reservation(self, reservation_id: int) -> None:
        result = self._session.execute(
            delete(ReservationRecord).where(ReservationRecord.id == reservation_id)
        )
        if result.rowcount == 0:
            raise NotFound(f"Reservation {reservation_id} not found.")

    @_storage_errors
    def find_reservation(self, reservation_id: int) -> Reservation | None:
        q = (
            select(ReservationRecord)
            .options(joinedload(ReservationRecord.client), joinedload(ReservationRecord.table))
            .where(ReservationRecord.id == reservation_id)
            .execution_options(populate_existing=True)
        )
        record = self._session.scalars(q).one_or_none()
        return _reservation(record) if record else None

    @_storage_errors
    def list_reservations(self, name_fragment: str | None = None) -> list[Reservation]:
        q = (
            select(ReservationRecord)
            .join(ReservationRecord.client)
            .options(contains_eager(ReservationRecord.client), joinedload(ReservationRecord.table))
            .order_by(ReservationRecord.timestamp.asc(), ReservationRecord.id.asc())
            .execution_options(populate_existing=True)
        )
        if name_fragment:
            q = q.where(
                ClientRecord.name_folded.contains(name_fragment.casefold(), autoescape=True)
            )
        rows = self._session.scalars(q).unique().all()
        return [_reservation(row) for row in rows]

    @_storage_errors
    def count_reservations_for(self, numeral: int, when: datetime) -> int:
        return self._session.execute(
            select(func.count())
            .select_from(ReservationRecord)
            .where(ReservationRecord.table_numeral == numeral, ReservationRecord.timestamp == when)
        ).scalar_one()
