from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from habitloop.db.models.user_data_record import UserDataRecord
from habitloop.domain.models import Goal, UserData
from habitloop.services.store import UserDataStore


class _BrokenSession:
    def __init__(self) -> None:
        self.rolled_back = False
        self.closed = False

    def get(self, model, key):
        return None

    def add(self, obj) -> None:
        pass

    def commit(self) -> None:
        raise OperationalError("INSERT INTO user_data_records", {}, Exception("disk full"))

    def rollback(self) -> None:
        self.rolled_back = True

    def close(self) -> None:
        self.closed = True


def test_load_without_saved_state_returns_none(store) -> None:
    assert store.load() is None


def test_save_then_load_round_trips(store) -> None:
    data = UserData(name="Sam", plan_start_date=datetime(2025, 1, 6, tzinfo=timezone.utc))
    data.add_goal(Goal(title="Exercise", emoji="💪"))

    assert store.save(data) is True
    assert store.load() == data

    data.name = "Alex"
    assert store.save(data) is True
    assert store.load().name == "Alex"


def test_saved_document_uses_camel_case_keys(store, session_factory) -> None:
    store.save(UserData(plan_duration=30))

    session = session_factory()
    try:
        record = session.get(UserDataRecord, "userData")
        assert record.payload["planDuration"] == 30
        assert "dailyTaskHistory" in record.payload
    finally:
        session.close()


def test_corrupt_document_is_ignored(store, session_factory) -> None:
    session = session_factory()
    session.add(UserDataRecord(key="userData", payload={"planDuration": 0, "goals": "nope"}))
    session.commit()
    session.close()

    assert store.load() is None


def _insert_raw_payload(session_factory, raw: str) -> None:
    session = session_factory()
    session.execute(
        text("INSERT INTO user_data_records (key, payload) VALUES (:key, :payload)"),
        {"key": "userData", "payload": raw},
    )
    session.commit()
    session.close()


def test_undecodable_document_is_ignored(store, session_factory) -> None:
    _insert_raw_payload(session_factory, "{not json")

    assert store.load() is None
    assert store.save(UserData(name="Sam")) is True
    assert store.load().name == "Sam"


def test_engine_starts_fresh_over_undecodable_document(store, session_factory, make_engine) -> None:
    _insert_raw_payload(session_factory, "{not json")

    engine = make_engine()
    assert engine.snapshot().goals == []

    engine.set_goals([Goal(title="Read")])
    assert [goal.title for goal in store.load().goals] == ["Read"]


def test_clear_removes_undecodable_document(store, session_factory) -> None:
    _insert_raw_payload(session_factory, "{not json")

    store.clear()

    session = session_factory()
    try:
        assert session.execute(text("SELECT COUNT(*) FROM user_data_records")).scalar() == 0
    finally:
        session.close()


def test_save_failure_is_reported_not_raised() -> None:
    broken = _BrokenSession()
    store = UserDataStore(lambda: broken, key="userData")

    assert store.save(UserData()) is False
    assert broken.rolled_back is True
    assert broken.closed is True


def test_clear_removes_saved_state(store) -> None:
    store.save(UserData(name="Sam"))
    store.clear()

    assert store.load() is None


def test_keys_are_independent(session_factory) -> None:
    first = UserDataStore(session_factory, key="first")
    second = UserDataStore(session_factory, key="second")
    first.save(UserData(name="One"))

    assert second.load() is None
    assert first.load().name == "One"
