import csv
from datetime import date
from io import StringIO

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from csv_utils import export_month_csv, sanitize_csv_value
from database import Base
from models import ExpenseKind, ExpenseStatus, SortDirection, SortField
from schemas import FixedExpenseIn, VariableExpenseIn
from services import (
    ExpenseFilters,
    ExpenseQueryService,
    ExpenseStore,
    ExportService,
    matches_query,
)
from storage import KeyValueStorage


def _store(today: date = date(2024, 2, 10)) -> ExpenseStore:
    engine = create_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    storage = KeyValueStorage(sessionmaker(bind=engine, expire_on_commit=False))
    return ExpenseStore(storage, today_provider=lambda: today).load()


def _populate(store):
    electricity = store.add_fixed(
        FixedExpenseIn(
            name="Electricity bill",
            amount_cents=18_000,
            category="MONTHLY_BILLS",
            payment_method="PIX",
            due_date=date(2024, 2, 8),
            is_paid=True,
        )
    )
    water = store.add_fixed(
        FixedExpenseIn(
            name="Water",
            amount_cents=7_000,
            category="MONTHLY_BILLS",
            payment_method="PIX",
            due_date=date(2024, 2, 12),
        )
    )
    for name, amount, day in (
        ("Bakery", 1_200, date(2024, 2, 3)),
        ("Fuel station", 25_000, date(2024, 2, 9)),
        ("Cinema", 4_000, date(2024, 1, 28)),
    ):
        store.add_variable(
            VariableExpenseIn(
                name=name,
                amount_cents=amount,
                category="LEISURE",
                payment_method="CARD",
                date=day,
            )
        )
    return electricity, water


def test_matches_query():
    assert matches_query("Electricity bill", None)
    assert matches_query("Electricity bill", "  ")
    assert matches_query("Electricity bill", "ELEC")
    assert matches_query("Electricity bill", "electrcity")
    assert not matches_query("Electricity bill", "water")
    assert not matches_query("Gas", "gs")


def test_month_listing_filters_by_kind_and_search():
    store = _store()
    _populate(store)
    queries = ExpenseQueryService(store)

    everything = queries.list_for_month("2024-02")
    assert len(everything) == 4

    fixed = queries.list_for_month("2024-02", ExpenseFilters(kind=ExpenseKind.fixed))
    assert {i.name for i in fixed} == {"Electricity bill", "Water"}

    variable = queries.list_for_month(
        "2024-02", ExpenseFilters(kind=ExpenseKind.variable)
    )
    assert {i.name for i in variable} == {"Bakery", "Fuel station"}

    found = queries.list_for_month("2024-02", ExpenseFilters(query="fuel"))
    assert [i.name for i in found] == ["Fuel station"]


def test_paid_filter_and_sorting():
    store = _store()
    _populate(store)
    queries = ExpenseQueryService(store)

    unpaid = queries.list_for_month("2024-02", ExpenseFilters(paid=False))
    assert [i.name for i in unpaid] == ["Water"]

    by_amount = queries.list_for_month(
        "2024-02",
        ExpenseFilters(sort=SortField.amount, direction=SortDirection.desc),
    )
    assert [i.amount_cents for i in by_amount] == [25_000, 18_000, 7_000, 1_200]

    by_date = queries.list_for_month(
        "2024-02", ExpenseFilters(direction=SortDirection.asc)
    )
    assert [i.name for i in by_date] == [
        "Bakery",
        "Electricity bill",
        "Fuel station",
        "Water",
    ]


def test_later_month_lists_projections_only():
    store = _store()
    electricity, water = _populate(store)
    march = ExpenseQueryService(store).list_for_month("2024-03")
    assert {i.id for i in march} == {f"{electricity.id}_2024-03", f"{water.id}_2024-03"}
    assert all(i.is_fixed for i in march)
    assert all(not i.is_paid for i in march)


def test_recent_variable_returns_latest_first():
    store = _store()
    _populate(store)
    recent = ExpenseQueryService(store).recent_variable(limit=2)
    assert [e.name for e in recent] == ["Fuel station", "Bakery"]


def test_export_json_contains_every_collection():
    store = _store()
    _populate(store)
    data = ExportService(store).export_json()
    assert "exportDate" in data
    assert data["resetDay"] == store.reset_day
    assert len(data["fixedExpenses"]) == 2
    assert len(data["variableExpenses"]) == 3
    assert data["fixedExpenses"][0]["dueDate"] == "2024-02-08"
    assert [c["id"] for c in data["customCategories"]][0] == "MONTHLY_BILLS"
    assert data["monthlyHistory"] == []


def test_month_csv_export_sanitizes_and_labels_rows():
    store = _store()
    _populate(store)
    store.add_variable(
        VariableExpenseIn(
            name="=HYPERLINK()",
            amount_cents=50,
            category="OTHER",
            payment_method="CASH",
            date=date(2024, 2, 1),
        )
    )
    items = ExpenseQueryService(store).list_for_month(
        "2024-02", ExpenseFilters(direction=SortDirection.asc)
    )
    text = export_month_csv(
        items,
        {i.id: store.expense_status(i) for i in items},
        {c.id: c.name for c in store.categories},
        {m.id: m.name for m in store.payment_methods},
    )
    rows = list(csv.reader(StringIO(text)))
    assert rows[0] == [
        "Date",
        "Kind",
        "Name",
        "Amount",
        "Category",
        "PaymentMethod",
        "Status",
    ]
    assert rows[1][2] == "\t=HYPERLINK()"
    assert rows[1][3] == "0.50"
    assert rows[1][5] == "Cash"
    electricity = next(r for r in rows if r[2] == "Electricity bill")
    assert electricity[1] == "fixed"
    assert electricity[6] == ExpenseStatus.paid.value


def test_sanitize_csv_value():
    assert sanitize_csv_value("  ") == ""
    assert sanitize_csv_value("+1") == "\t+1"
    assert sanitize_csv_value("Groceries") == "Groceries"
