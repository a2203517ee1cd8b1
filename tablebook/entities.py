"""Domain entities: clients, tables and reservations.

Every entity validates its fields on construction and on assignment. A failed
check raises :class:`tablebook.errors.ValidationError`, so an entity either
satisfies all of its field invariants or does not exist.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .utils.time import display, to_local_naive

if TYPE_CHECKING:
    from .gateway import Gateway

MIN_TABLE_NUMERAL = 1
MAX_TABLE_NUMERAL = 20
MIN_CAPACITY = 1
MAX_CAPACITY = 10
PHONE_DIGITS = 11


def _translate(exc: PydanticValidationError) -> ValidationError:
    err = exc.errors(include_url=False)[0]
    field = ".".join(str(part) for part in err["loc"]) or None
    msg = err["msg"]
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]
    elif field:
        msg = f"{field}: {msg}"
    return ValidationError(msg, field)


class Entity(BaseModel):
    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    @model_validator(mode="wrap")
    @classmethod
    def translate_errors(cls, data: Any, handler: Any) -> Any:
        try:
            return handler(data)
        except PydanticValidationError as exc:
            raise _translate(exc) from exc

    def __setattr__(self, name: str, value: Any):
        try:
            super().__setattr__(name, value)
        except PydanticValidationError as exc:
            raise _translate(exc) from exc


class Client(Entity):
    """A restaurant client. A non-null ``discount`` marks a VIP client."""

    id: int | None = None
    name: str
    phone: str
    discount: float | None = None

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str) -> str:
        if not v:
            raise ValueError("name must not be empty")
        return v

    @field_validator("phone")
    @classmethod
    def check_phone(cls, v: str) -> str:
        if len(v) != PHONE_DIGITS or not (v.isascii() and v.isdigit()):
            raise ValueError(f"phone must have exactly {PHONE_DIGITS} digits")
        return v

    @field_validator("discount")
    @classmethod
    def check_discount(cls, v: float | None) -> float | None:
        if v is not None and not 0 <= v <= 100:
            raise ValueError("discount must be between 0 and 100")
        return v

    @property
    def is_vip(self) -> bool:
        return self.discount is not None

    def save(self, gateway: Gateway) -> Client:
        """Inserts the client on first save (assigning its id), updates it afterwards."""
        with gateway.transaction():
            self.id = gateway.save_client(self)
        return self

    @staticmethod
    def find_by_id(gateway: Gateway, client_id: int) -> Client | None:
        return gateway.load_client(client_id)

    @staticmethod
    def list_all(gateway: Gateway) -> list[Client]:
        return gateway.list_clients()


class Table(Entity):
    """A dining table keyed by its numeral. A non-null ``exclusive_view`` marks a VIP table."""

    numeral: int
    capacity: int
    occupied: bool = False
    exclusive_view: bool | None = None

    @field_validator("numeral")
    @classmethod
    def check_numeral(cls, v: int) -> int:
        if not MIN_TABLE_NUMERAL <= v <= MAX_TABLE_NUMERAL:
            raise ValueError(
                f"table numeral must be between {MIN_TABLE_NUMERAL} and {MAX_TABLE_NUMERAL}"
            )
        return v

    @field_validator("capacity")
    @classmethod
    def check_capacity(cls, v: int) -> int:
        if not MIN_CAPACITY <= v <= MAX_CAPACITY:
            raise ValueError(f"capacity must be between {MIN_CAPACITY} and {MAX_CAPACITY}")
        return v

    @property
    def vip(self) -> bool:
        return self.exclusive_view is not None

    def save(self, gateway: Gateway) -> Table:
        with gateway.transaction():
            gateway.save_table(self)
        return self

    @staticmethod
    def find_by_number(gateway: Gateway, numeral: int) -> Table | None:
        return gateway.load_table(numeral)

    @staticmethod
    def list_all(gateway: Gateway) -> list[Table]:
        return gateway.list_tables()

    @staticmethod
    def list_available(gateway: Gateway) -> list[Table]:
        return gateway.list_tables(available_only=True)


class Reservation(Entity):
    """A client's claim on a table at a point in time.

    Reservations are immutable. A new reservation needs a timestamp after
    "now", which is the wall clock unless a ``now`` is passed to :meth:`create`.
    Rows read back from storage are built with
    ``Reservation.model_validate(data, context={"stored": True})`` and skip
    that check.
    """

    model_config = ConfigDict(frozen=True, validate_assignment=True, str_strip_whitespace=True)

    id: int | None = None
    client: Client
    table: Table
    timestamp: datetime

    @field_validator("client", "table", "timestamp", mode="before")
    @classmethod
    def check_present(cls, v: Any, info: ValidationInfo) -> Any:
        if v is None:
            raise ValueError(f"{info.field_name} is required")
        return v

    @field_validator("timestamp")
    @classmethod
    def check_future(cls, v: datetime, info: ValidationInfo) -> datetime:
        v = to_local_naive(v)
        context = info.context or {}
        if context.get("stored"):
            return v
        if v <= (context.get("now") or datetime.now()):
            raise ValueError("reservation time must be in the future")
        return v

    @classmethod
    def create(
        cls, client: Client, table: Table, timestamp: datetime, now: datetime | None = None
    ) -> Reservation:
        return cls.model_validate(
            {"client": client, "table": table, "timestamp": timestamp},
            context={"now": now} if now else None,
        )

    @property
    def table_numeral(self) -> int:
        return self.table.numeral

    @property
    def display_time(self) -> str:
        return display(self.timestamp)

    def save(self, gateway: Gateway) -> Reservation:
        """Inserts the reservation and marks its table occupied in one transaction.

        Returns a copy carrying the generated id.
        """
        if self.client.id is None:
            raise ValidationError("client must be saved before it can book a table", "client")
        was_occupied = self.table.occupied
        try:
            with gateway.transaction():
                reservation_id = gateway.insert_reservation(self)
                self.table.occupied = True
                gateway.save_table(self.table)
        except Exception:
            self.table.occupied = was_occupied
            raise
        return self.model_copy(update={"id": reservation_id})

    def cancel(self, gateway: Gateway) -> None:
        """Deletes the reservation and releases its table in one transaction."""
        if self.id is None:
            raise ValidationError("reservation has not been saved", "id")
        was_occupied = self.table.occupied
        try:
            with gateway.transaction():
                gateway.delete_reservation(self.id)
                self.table.occupied = False
                gateway.save_table(self.table)
        except Exception:
            self.table.occupied = was_occupied
            raise
