import logging
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from models import StorageKey
from periods import MonthKey
from schemas import FixedExpenseIn, VariableExpenseIn
from services import (
    DEFAULT_CATEGORIES,
    DEFAULT_PAYMENT_METHODS,
    ExpenseStore,
    StoreNotLoadedError,
)
from storage import KeyValueStorage


def _engine(with_schema: bool = True):
    engine = create_engine("sqlite://", poolclass=StaticPool)
    if with_schema:
        Base.metadata.create_all(engine)
    return engine


def _store(engine, today: date = date(2024, 2, 10)) -> ExpenseStore:
    storage = KeyValueStorage(sessionmaker(bind=engine, expire_on_commit=False))
    return ExpenseStore(storage, today_provider=lambda: today).load()


def _fixed(**overrides) -> FixedExpenseIn:
    fields = dict(
        name="Rent",
        amount_cents=120_000,
        category="MONTHLY_BILLS",
        payment_method="PIX",
        due_date=date(2024, 1, 31),
    )
    fields.update(overrides)
    return FixedExpenseIn(**fields)


def _variable(**overrides) -> VariableExpenseIn:
    fields = dict(
        name="Market",
        amount_cents=4_550,
        category="GROCERIES",
        payment_method="CARD",
        date=date(2024, 2, 5),
    )
    fields.update(overrides)
    return VariableExpenseIn(**fields)


def test_store_rejects_use_before_load():
    storage = KeyValueStorage(sessionmaker(bind=_engine()))
    store = ExpenseStore(storage)
    with pytest.raises(StoreNotLoadedError):
        store.fixed_expenses
    with pytest.raises(StoreNotLoadedError):
        store.add_fixed(_fixed())
    with pytest.raises(StoreNotLoadedError):
        store.set_reset_day(5)


def test_load_seeds_default_categories_and_payment_methods():
    engine = _engine()
    store = _store(engine)
    assert [c.id for c in store.categories] == [c[0] for c in DEFAULT_CATEGORIES]
    assert [m.id for m in store.payment_methods] == [
        m[0] for m in DEFAULT_PAYMENT_METHODS
    ]
    assert store.current_month == MonthKey(2024, 2)
    assert not store.is_locked

    reloaded = _store(engine)
    assert [c.id for c in reloaded.categories] == [c.id for c in store.categories]


def test_add_update_delete_round_trip_through_storage():
    engine = _engine()
    store = _store(engine)
    rent = store.add_fixed(_fixed())
    market = store.add_variable(_variable())
    assert rent.is_fixed and not market.is_fixed

    updated = store.update_variable(market.id, _variable(amount_cents=5_000))
    assert updated.id == market.id
    assert updated.amount_cents == 5_000

    reloaded = _store(engine)
    assert [e.id for e in reloaded.fixed_expenses] == [rent.id]
    assert reloaded.variable_expenses[0].amount_cents == 5_000
    assert reloaded.fixed_expenses[0].due_date == date(2024, 1, 31)

    assert reloaded.delete_variable(market.id)
    assert not reloaded.delete_variable(market.id)
    assert _store(engine).variable_expenses == []


def test_records_persist_in_camel_case():
    engine = _engine()
    store = _store(engine)
    store.add_fixed(_fixed())
    raw = store.storage.load_all()[StorageKey.fixed_expenses.value][0]
    assert raw["paymentMethod"] == "PIX"
    assert raw["dueDate"] == "2024-01-31"
    assert raw["amountCents"] == 120_000
    assert raw["isFixed"] is True


def test_locked_store_rejects_changes():
    store = _store(_engine())
    rent = store.add_fixed(_fixed())
    assert store.toggle_lock() is True

    assert store.add_fixed(_fixed(name="Gym")) is None
    assert store.add_variable(_variable()) is None
    assert store.update_fixed(rent.id, _fixed(name="Flat")) is None
    assert not store.delete_fixed(rent.id)
    assert not store.set_expense_payment_status(rent.id, "2024-02", True)
    assert [e.name for e in store.fixed_expenses] == ["Rent"]

    assert store.toggle_lock() is False
    assert store.update_fixed(rent.id, _fixed(name="Flat")).name == "Flat"


def test_update_with_projected_occurrence_id_is_ignored():
    store = _store(_engine())
    rent = store.add_fixed(_fixed())
    assert store.update_fixed(f"{rent.id}_2024-03", _fixed(name="Other")) is None
    assert store.fixed_expenses[0].name == "Rent"


def test_resolve_occurrence_id():
    store = _store(_engine())
    rent = store.add_fixed(_fixed())

    origin = store.resolve_occurrence_id(rent.id)
    assert origin.is_origin_month
    assert origin.month_key == MonthKey(2024, 1)

    later = store.resolve_occurrence_id(f"{rent.id}_2024-03")
    assert later.origin_id == rent.id
    assert later.month_key == MonthKey(2024, 3)
    assert str(later) == f"{rent.id}_2024-03"

    assert store.resolve_occurrence_id(f"{rent.id}_2023-12") is None
    assert store.resolve_occurrence_id(f"{rent.id}_2024-01") is None
    assert store.resolve_occurrence_id(f"{rent.id}_garbage") is None
    assert store.resolve_occurrence_id("missing_2024-03") is None


def test_reset_day_validation_and_persistence():
    engine = _engine()
    store = _store(engine)
    assert not store.set_reset_day(0)
    assert not store.set_reset_day(32)
    assert store.set_reset_day(15)
    assert _store(engine).reset_day == 15


def test_month_navigation():
    store = _store(_engine())
    assert store.navigate_month("prev") == MonthKey(2024, 1)
    assert store.navigate_month("prev") == MonthKey(2023, 12)
    store.set_current_month("2024-11")
    assert store.navigate_month("next") == MonthKey(2024, 12)
    assert store.navigate_month("next") == MonthKey(2025, 1)


def test_sync_toggle_is_flag_only(caplog):
    engine = _engine()
    store = _store(engine)
    with caplog.at_level(logging.INFO):
        assert store.toggle_sync() is True
    assert "sync_flag_enabled" in caplog.text
    assert _store(engine).sync_enabled is True


def test_invalid_stored_records_are_skipped(caplog):
    engine = _engine()
    storage = KeyValueStorage(sessionmaker(bind=engine))
    storage.write(
        StorageKey.fixed_expenses,
        [
            {"id": "broken"},
            {
                "id": "1",
                "name": "Rent",
                "amountCents": 1000,
                "category": "MONTHLY_BILLS",
                "paymentMethod": "PIX",
                "isFixed": True,
                "dueDate": "2024-01-31",
                "isPaid": False,
            },
        ],
    )
    storage.write(StorageKey.reset_day, "banana")

    with caplog.at_level(logging.WARNING):
        store = _store(engine)
    assert [e.id for e in store.fixed_expenses] == ["1"]
    assert store.reset_day == 1
    assert "storage_record_skipped" in caplog.text


def test_persistence_failures_are_logged_and_memory_stays_authoritative(caplog):
    engine = _engine(with_schema=False)
    with caplog.at_level(logging.WARNING):
        store = _store(engine)
        market = store.add_variable(_variable())
    assert "storage_load_failed" in caplog.text
    assert "storage_write_failed" in caplog.text
    assert [e.id for e in store.variable_expenses] == [market.id]
    assert [c.id for c in store.categories] == [c[0] for c in DEFAULT_CATEGORIES]
