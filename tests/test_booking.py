"""Tests for the booking engine: admission, occupancy and cancellation."""

import threading
from datetime import datetime, timedelta

import pytest

from tablebook.booking import BookingEngine
from tablebook.entities import Client, Table
from tablebook.errors import Conflict, InvalidArgument, NotFound, StorageFailure, ValidationError


def _fail_storage(*args, **kwargs):
    raise StorageFailure("Storage is unavailable.")


def _untouchable(*args, **kwargs):
    raise AssertionError("storage must not be touched")


def assert_occupancy_consistent(gateway):
    reserved = {}
    for reservation in gateway.list_reservations():
        reserved[reservation.table_numeral] = reserved.get(reservation.table_numeral, 0) + 1
    for table in gateway.list_tables():
        assert table.occupied == (reserved.get(table.numeral, 0) == 1), table.numeral
        assert reserved.get(table.numeral, 0) <= 1


class TestBook:
    def test_book_occupies_table(self, engine, gateway, ana, slot):
        when = slot(19)

        reservation = engine.book(ana, 1, when)

        assert reservation.id is not None
        assert ana.id is not None
        assert reservation.client.id == ana.id
        assert reservation.table.occupied is True
        assert gateway.load_table(1).occupied is True
        assert_occupancy_consistent(gateway)

    def test_round_trip(self, engine, ana, slot):
        when = slot(19, 30)

        booked = engine.book(ana, 4, when)
        found = engine.find(booked.id)

        assert found.client.name == "Ana Silva"
        assert found.client.phone == "11999999999"
        assert found.table_numeral == 4
        assert found.timestamp == when
        assert [r.id for r in engine.list()] == [booked.id]

    def test_existing_client_is_reused(self, engine, gateway, ana, slot):
        first = engine.book(ana, 1, slot(19))
        second = engine.book(ana, 2, slot(20))

        assert first.client.id == second.client.id
        assert len(Client.list_all(gateway)) == 1

    @pytest.mark.parametrize("offset", [timedelta(0), timedelta(hours=1), timedelta(days=30)])
    def test_occupied_table_conflicts_regardless_of_time(self, engine, gateway, ana, slot, offset):
        first = slot(19)
        engine.book(ana, 1, first)

        with pytest.raises(Conflict):
            engine.book(Client(name="Bruno Costa", phone="21988887777"), 1, first + offset)

        assert len(engine.list()) == 1
        assert_occupancy_consistent(gateway)

    def test_stale_flag_still_blocks_duplicate_slot(self, engine, gateway, ana, slot):
        when = slot(19)
        engine.book(ana, 2, when)
        # Simulate a stale occupancy flag.
        Table(numeral=2, capacity=4, occupied=False).save(gateway)

        with pytest.raises(Conflict, match="duplicate slot"):
            engine.book(Client(name="Bruno Costa", phone="21988887777"), 2, when)

        assert len(engine.list()) == 1

    @pytest.mark.parametrize("numeral", [0, 21, 100, -1])
    def test_numeral_out_of_range_rejected_before_storage(
        self, engine, monkeypatch, ana, slot, numeral
    ):
        monkeypatch.setattr(engine.gateway, "load_table", _untouchable)
        monkeypatch.setattr(engine.gateway, "transaction", _untouchable)

        with pytest.raises(ValidationError):
            engine.book(ana, numeral, slot(19))

    def test_non_integer_numeral_rejected(self, engine, ana, slot):
        with pytest.raises(InvalidArgument):
            engine.book(ana, "1", slot(19))

    def test_missing_client_rejected(self, engine, slot):
        with pytest.raises(InvalidArgument, match="client"):
            engine.book(None, 1, slot(19))

    @pytest.mark.parametrize("delta", [timedelta(0), timedelta(minutes=-1), timedelta(days=-3)])
    def test_time_not_in_future_rejected(self, gateway, ana, delta):
        now = datetime(2030, 1, 1, 12, 0)
        engine = BookingEngine(gateway, clock=lambda: now)

        with pytest.raises(ValidationError, match="future"):
            engine.book(ana, 1, now + delta)

        assert gateway.load_table(1).occupied is False

    def test_missing_time_rejected(self, engine, ana):
        with pytest.raises(InvalidArgument):
            engine.book(ana, 1, None)

    def test_malformed_phone_fails_before_table_lookup(self, engine, monkeypatch, slot):
        monkeypatch.setattr(engine.gateway, "load_table", _untouchable)

        with pytest.raises(ValidationError):
            engine.book(Client(name="Ana Silva", phone="123"), 1, slot(19))

    def test_unknown_table(self, engine, ana, slot):
        with pytest.raises(NotFound):
            engine.book(ana, 15, slot(19))

        assert ana.id is None

    def test_failed_flag_write_rolls_back_reservation(self, engine, gateway, monkeypatch, ana, slot):
        with monkeypatch.context() as m:
            m.setattr(gateway, "save_table", _fail_storage)
            with pytest.raises(StorageFailure):
                engine.book(ana, 1, slot(19))

        assert engine.list() == []
        assert Client.list_all(gateway) == []
        assert gateway.load_table(1).occupied is False
        assert ana.id is None

        # The same client can book once storage recovers.
        reservation = engine.book(ana, 1, slot(19))
        assert reservation.id is not None
        assert_occupancy_consistent(gateway)

    def test_concurrent_bookings_yield_one_winner(self, app, engine, gateway, slot):
        attempts = 8
        barrier = threading.Barrier(attempts)
        outcomes = []
        outcomes_lock = threading.Lock()

        def attempt(i):
            with app.app_context():
                client = Client(name=f"Guest {i}", phone=f"1190000000{i}")
                barrier.wait()
                try:
                    engine.book(client, 5, slot(19, i))
                    result = "ok"
                except Conflict:
                    result = "conflict"
                with outcomes_lock:
                    outcomes.append(result)

        threads = [threading.Thread(target=attempt, args=(i,)) for i in range(attempts)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 1
        assert outcomes.count("conflict") == attempts - 1
        assert len(engine.list()) == 1
        assert gateway.load_table(5).occupied is True
        assert_occupancy_consistent(gateway)


class TestCancel:
    def test_cancel_frees_table(self, engine, gateway, ana, slot):
        reservation = engine.book(ana, 3, slot(19))

        engine.cancel(reservation.id)

        assert gateway.load_table(3).occupied is False
        assert engine.list() == []
        with pytest.raises(NotFound):
            engine.find(reservation.id)
        assert_occupancy_consistent(gateway)

    def test_cancelled_table_can_be_booked_again(self, engine, gateway, ana, slot):
        first = engine.book(ana, 3, slot(19))
        engine.cancel(first.id)

        second = engine.book(ana, 3, slot(19))

        assert engine.find(second.id).timestamp == slot(19)
        assert gateway.load_table(3).occupied is True

    def test_cancel_unknown_id_leaves_state_unchanged(self, engine, gateway, ana, slot):
        reservation = engine.book(ana, 3, slot(19))
        before = (engine.list(), gateway.list_tables())

        with pytest.raises(NotFound):
            engine.cancel(reservation.id + 999)

        assert (engine.list(), gateway.list_tables()) == before

    def test_failed_flag_write_keeps_reservation(self, engine, gateway, monkeypatch, ana, slot):
        reservation = engine.book(ana, 3, slot(19))
        with monkeypatch.context() as m:
            m.setattr(gateway, "save_table", _fail_storage)
            with pytest.raises(StorageFailure):
                engine.cancel(reservation.id)

        assert [r.id for r in engine.list()] == [reservation.id]
        assert gateway.load_table(3).occupied is True

    def test_cancel_twice(self, engine, ana, slot):
        reservation = engine.book(ana, 3, slot(19))
        engine.cancel(reservation.id)

        with pytest.raises(NotFound):
            engine.cancel(reservation.id)


class TestQueries:
    @pytest.fixture
    def booked(self, engine, slot):
        later = engine.book(Client(name="Ana Silva", phone="11999999999"), 1, slot(20, days=3))
        sooner = engine.book(Client(name="Bruno Costa", phone="21988887777"), 2, slot(19))
        middle = engine.book(Client(name="ANA PAULA", phone="31977776666"), 3, slot(21, days=2))
        return later, sooner, middle

    def test_list_ordered_by_time(self, engine, booked):
        later, sooner, middle = booked

        assert [r.id for r in engine.list()] == [sooner.id, middle.id, later.id]

    def test_list_hydrates_client_and_table(self, engine, booked):
        for reservation in engine.list():
            assert reservation.client.id is not None
            assert reservation.table.occupied is True

    def test_search_is_case_insensitive(self, engine, booked):
        later, _, middle = booked

        assert [r.id for r in engine.search_by_client_name("ana")] == [middle.id, later.id]
        assert [r.id for r in engine.search_by_client_name("COSTA")] != []
        assert engine.search_by_client_name("Zoe") == []

    def test_search_matches_wildcards_literally(self, engine, booked):
        assert engine.search_by_client_name("%") == []
        assert engine.search_by_client_name("_") == []

    def test_empty_search_lists_everything(self, engine, booked):
        assert len(engine.search_by_client_name("")) == 3

    def test_search_fragment_is_used_as_given(self, engine, booked):
        later, _, _ = booked

        assert engine.search_by_client_name("Silva ") == []
        assert engine.search_by_client_name("  ") == []
        assert [r.id for r in engine.search_by_client_name("a Silva")] == [later.id]

    def test_search_folds_accented_names(self, engine, booked, slot):
        angela = engine.book(Client(name="Ângela Souza", phone="41966665555"), 4, slot(18))

        for fragment in ("ângela", "ÂNGELA", "Ângela"):
            assert [r.id for r in engine.search_by_client_name(fragment)] == [angela.id]
        assert engine.search_by_client_name("angela") == []

    def test_available_tables(self, engine, booked):
        numerals = [t.numeral for t in engine.list_available_tables()]

        assert numerals == list(range(4, 11))


def test_scenario_book_conflict_cancel(engine, gateway, slot):
    """Table 1 (capacity 4): book, second booking conflicts, cancel frees it."""
    table = gateway.load_table(1)
    assert table.capacity == 4 and table.occupied is False

    first = engine.book(Client(name="Ana Silva", phone="11999999999"), 1, slot(19))
    assert gateway.load_table(1).occupied is True

    with pytest.raises(Conflict):
        engine.book(Client(name="Ana Silva", phone="11999999999"), 1, slot(20))

    engine.cancel(first.id)
    assert gateway.load_table(1).occupied is False
    assert engine.list() == []


def test_scenario_invalid_inputs(engine, slot):
    with pytest.raises(ValidationError):
        engine.book(Client(name="Ana Silva", phone="11999999999"), 21, slot(19))
    with pytest.raises(ValidationError):
        engine.book(Client(name="Ana Silva", phone="123"), 1, slot(19))


class TestPastReservations:
    @pytest.fixture
    def past(self, gateway, ana):
        # An engine whose clock is years behind can still store a reservation
        # that is already in the past for the real clock.
        behind = BookingEngine(gateway, clock=lambda: datetime(2020, 1, 1, 12, 0))
        return behind.book(ana, 6, datetime(2024, 1, 1, 19, 0))

    def test_injected_clock_decides_what_is_future(self, past):
        assert past.id is not None
        assert past.timestamp == datetime(2024, 1, 1, 19, 0)

    def test_past_reservation_is_listed_and_found(self, engine, past):
        assert [r.id for r in engine.list()] == [past.id]
        assert engine.find(past.id).timestamp == datetime(2024, 1, 1, 19, 0)
        assert [r.id for r in engine.search_by_client_name("silva")] == [past.id]

    def test_past_reservation_can_be_cancelled(self, engine, gateway, past):
        engine.cancel(past.id)

        assert engine.list() == []
        assert gateway.load_table(6).occupied is False
        assert_occupancy_consistent(gateway)


class TestUpdateTable:
    def test_update_keeps_occupancy(self, engine, gateway, ana, slot):
        engine.book(ana, 2, slot(19))

        table, created = engine.update_table(2, 6, True)

        assert created is False
        assert table.occupied is True
        stored = gateway.load_table(2)
        assert (stored.capacity, stored.occupied, stored.exclusive_view) == (6, True, True)

    def test_update_creates_missing_table(self, engine, gateway):
        table, created = engine.update_table(15, 2)

        assert created is True
        assert gateway.load_table(15) == table

    def test_cancel_keeps_updated_capacity(self, engine, gateway, ana, slot):
        reservation = engine.book(ana, 2, slot(19))
        engine.update_table(2, 8)

        engine.cancel(reservation.id)

        stored = gateway.load_table(2)
        assert (stored.capacity, stored.occupied) == (8, False)

    @pytest.mark.parametrize("operation", ["book", "cancel"])
    def test_update_is_serialized_with_occupancy_changes(
        self, app, engine, gateway, monkeypatch, slot, operation
    ):
        existing = None
        if operation == "cancel":
            existing = engine.book(Client(name="Ana Silva", phone="11999999999"), 1, slot(19))

        read_done = threading.Event()
        release = threading.Event()
        load_table = gateway.load_table

        def paused_load_table(numeral, for_update=False):
            table = load_table(numeral, for_update=for_update)
            if threading.current_thread().name == "updater":
                read_done.set()
                release.wait(timeout=5)
            return table

        monkeypatch.setattr(gateway, "load_table", paused_load_table)
        errors = []

        def run(target):
            with app.app_context():
                try:
                    target()
                except Exception as exc:
                    errors.append(exc)

        def occupancy_change():
            if operation == "book":
                engine.book(Client(name="Bruno Costa", phone="21988887777"), 1, slot(20))
            else:
                engine.cancel(existing.id)

        updater = threading.Thread(
            target=run, args=(lambda: engine.update_table(1, 6),), name="updater"
        )
        changer = threading.Thread(target=run, args=(occupancy_change,), name="changer")

        updater.start()
        assert read_done.wait(timeout=5)
        changer.start()
        changer.join(timeout=0.2)
        # The occupancy change waits for the table update to finish.
        assert changer.is_alive()

        release.set()
        updater.join(timeout=5)
        changer.join(timeout=5)

        assert errors == []
        stored = gateway.load_table(1)
        assert stored.capacity == 6
        assert stored.occupied is (operation == "book")
        assert_occupancy_consistent(gateway)
