import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.responses import StreamingResponse

from config import get_settings
from csrf import generate_csrf_token, validate_csrf_token
from csv_utils import export_month_csv
from database import SessionLocal, create_schema
from models import ExpenseKind, SortDirection, SortField
from periods import MonthKey
from recurrence import ListedExpense
from schemas import (
    CategoryIn,
    CategoryShareIn,
    FixedExpenseIn,
    MonthNavigationIn,
    PaymentMethodIn,
    PaymentStatusIn,
    ResetDayIn,
    VariableExpenseIn,
)
from services import (
    BudgetService,
    CategoryService,
    ExpenseFilters,
    ExpenseQueryService,
    ExpenseStore,
    ExportService,
    PaymentMethodService,
)
from storage import KeyValueStorage

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Budget Planner")

store = ExpenseStore(KeyValueStorage(SessionLocal))


@app.on_event("startup")
def startup_event():
    create_schema()
    store.load()


def get_store() -> ExpenseStore:
    return store


def require_csrf(x_csrf_token: str = Header(default="")) -> None:
    if not validate_csrf_token(x_csrf_token):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")


def month_from_path(month_key: str) -> MonthKey:
    try:
        return MonthKey.parse(month_key)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def ensure_unlocked(store: ExpenseStore) -> None:
    if store.is_locked:
        raise HTTPException(status_code=423, detail="Budget is locked")


def dump(record) -> dict:
    return record.model_dump(mode="json", by_alias=True)


def listed(store: ExpenseStore, item: ListedExpense) -> dict:
    payload = dump(item)
    payload["status"] = store.expense_status(item).value
    return payload


@app.get("/api/csrf-token")
async def csrf_token():
    return {"token": generate_csrf_token()}


@app.get("/api/settings")
async def read_settings(store: ExpenseStore = Depends(get_store)):
    return {
        "resetDay": store.reset_day,
        "isLocked": store.is_locked,
        "syncWithFirebase": store.sync_enabled,
    }


@app.put("/api/settings/reset-day", dependencies=[Depends(require_csrf)])
async def update_reset_day(
    payload: ResetDayIn, store: ExpenseStore = Depends(get_store)
):
    if not store.set_reset_day(payload.day):
        raise HTTPException(status_code=400, detail="Reset day must be 1..31")
    return {"resetDay": store.reset_day}


@app.post("/api/settings/lock", dependencies=[Depends(require_csrf)])
async def toggle_lock(store: ExpenseStore = Depends(get_store)):
    return {"isLocked": store.toggle_lock()}


@app.post("/api/settings/sync", dependencies=[Depends(require_csrf)])
async def toggle_sync(store: ExpenseStore = Depends(get_store)):
    return {"syncWithFirebase": store.toggle_sync()}


@app.get("/api/months/current")
async def current_month(store: ExpenseStore = Depends(get_store)):
    month = store.current_month
    return {
        "month": str(month),
        "isToday": MonthKey.of(store.today()) == month,
        "hasSnapshot": store.snapshot(month) is not None,
    }


@app.post("/api/months/navigate", dependencies=[Depends(require_csrf)])
async def navigate_month(
    payload: MonthNavigationIn, store: ExpenseStore = Depends(get_store)
):
    return {"month": str(store.navigate_month(payload.direction))}


@app.get("/api/months/{month_key}/fixed-expenses")
async def month_fixed_expenses(
    month_key: str,
    paid: Optional[bool] = None,
    sort: SortField = SortField.date,
    direction: SortDirection = SortDirection.asc,
    store: ExpenseStore = Depends(get_store),
):
    month = month_from_path(month_key)
    filters = ExpenseFilters(
        kind=ExpenseKind.fixed, paid=paid, sort=sort, direction=direction
    )
    items = ExpenseQueryService(store).list_for_month(month, filters)
    return [listed(store, item) for item in items]


@app.get("/api/months/{month_key}/expenses")
async def month_expenses(
    month_key: str,
    kind: ExpenseKind = ExpenseKind.all,
    q: Optional[str] = None,
    paid: Optional[bool] = None,
    sort: SortField = SortField.date,
    direction: SortDirection = SortDirection.desc,
    store: ExpenseStore = Depends(get_store),
):
    month = month_from_path(month_key)
    filters = ExpenseFilters(
        kind=kind, query=q, paid=paid, sort=sort, direction=direction
    )
    items = ExpenseQueryService(store).list_for_month(month, filters)
    return [listed(store, item) for item in items]


@app.get("/api/months/{month_key}/export.csv")
async def export_month(month_key: str, store: ExpenseStore = Depends(get_store)):
    month = month_from_path(month_key)
    items = ExpenseQueryService(store).list_for_month(
        month, ExpenseFilters(direction=SortDirection.asc)
    )
    csv_text = export_month_csv(
        items,
        {item.id: store.expense_status(item) for item in items},
        {c.id: c.name for c in store.categories},
        {m.id: m.name for m in store.payment_methods},
    )
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="expenses_{month}.csv"'},
    )


@app.get("/api/expenses/recent")
async def recent_expenses(
    limit: int = Query(5, ge=1), store: ExpenseStore = Depends(get_store)
):
    return [dump(e) for e in ExpenseQueryService(store).recent_variable(limit)]


@app.post(
    "/api/fixed-expenses", status_code=201, dependencies=[Depends(require_csrf)]
)
async def create_fixed_expense(
    payload: FixedExpenseIn, store: ExpenseStore = Depends(get_store)
):
    ensure_unlocked(store)
    return dump(store.add_fixed(payload))


@app.put("/api/fixed-expenses/{expense_id}", dependencies=[Depends(require_csrf)])
async def update_fixed_expense(
    expense_id: str, payload: FixedExpenseIn, store: ExpenseStore = Depends(get_store)
):
    ensure_unlocked(store)
    ref = store.resolve_occurrence_id(expense_id)
    if ref is None:
        raise HTTPException(status_code=404, detail="Fixed expense not found")
    if not ref.is_origin_month:
        raise HTTPException(
            status_code=409, detail="Projected occurrences are edited via their origin"
        )
    return dump(store.update_fixed(ref.origin_id, payload))


@app.delete(
    "/api/fixed-expenses/{expense_id}",
    status_code=204,
    dependencies=[Depends(require_csrf)],
)
async def delete_fixed_expense(
    expense_id: str, store: ExpenseStore = Depends(get_store)
):
    ensure_unlocked(store)
    ref = store.resolve_occurrence_id(expense_id)
    origin_id = ref.origin_id if ref else expense_id
    if not store.delete_fixed(origin_id):
        raise HTTPException(status_code=404, detail="Fixed expense not found")


@app.post(
    "/api/fixed-expenses/{expense_id}/payment-status",
    dependencies=[Depends(require_csrf)],
)
async def set_payment_status(
    expense_id: str,
    payload: PaymentStatusIn,
    store: ExpenseStore = Depends(get_store),
):
    ensure_unlocked(store)
    ref = store.resolve_occurrence_id(expense_id)
    if ref is not None and not ref.is_origin_month:
        if str(ref.month_key) != payload.month_key:
            raise HTTPException(
                status_code=409, detail="Occurrence id does not match month"
            )
    origin_id = ref.origin_id if ref else expense_id
    if not store.set_expense_payment_status(origin_id, payload.month_key, payload.is_paid):
        raise HTTPException(status_code=404, detail="No occurrence in that month")
    occurrence = next(
        o
        for o in store.project_fixed_expenses(payload.month_key)
        if o.origin_id == origin_id
    )
    return listed(store, occurrence)


@app.post(
    "/api/variable-expenses", status_code=201, dependencies=[Depends(require_csrf)]
)
async def create_variable_expense(
    payload: VariableExpenseIn, store: ExpenseStore = Depends(get_store)
):
    ensure_unlocked(store)
    return dump(store.add_variable(payload))


@app.put(
    "/api/variable-expenses/{expense_id}", dependencies=[Depends(require_csrf)]
)
async def update_variable_expense(
    expense_id: str,
    payload: VariableExpenseIn,
    store: ExpenseStore = Depends(get_store),
):
    ensure_unlocked(store)
    updated = store.update_variable(expense_id, payload)
    if updated is None:
        raise HTTPException(status_code=404, detail="Variable expense not found")
    return dump(updated)


@app.delete(
    "/api/variable-expenses/{expense_id}",
    status_code=204,
    dependencies=[Depends(require_csrf)],
)
async def delete_variable_expense(
    expense_id: str, store: ExpenseStore = Depends(get_store)
):
    ensure_unlocked(store)
    if not store.delete_variable(expense_id):
        raise HTTPException(status_code=404, detail="Variable expense not found")


@app.get("/api/categories")
async def list_categories(store: ExpenseStore = Depends(get_store)):
    return [dump(c) for c in CategoryService(store).list_all()]


@app.post("/api/categories", status_code=201, dependencies=[Depends(require_csrf)])
async def create_category(payload: CategoryIn, store: ExpenseStore = Depends(get_store)):
    ensure_unlocked(store)
    return dump(CategoryService(store).create(payload))


@app.put("/api/categories/{category_id}", dependencies=[Depends(require_csrf)])
async def update_category(
    category_id: str, payload: CategoryIn, store: ExpenseStore = Depends(get_store)
):
    ensure_unlocked(store)
    updated = CategoryService(store).update(category_id, payload)
    if updated is None:
        raise HTTPException(status_code=404, detail="Category not found")
    return dump(updated)


@app.post("/api/categories/{category_id}/share", dependencies=[Depends(require_csrf)])
async def allocate_category_share(
    category_id: str, payload: CategoryShareIn, store: ExpenseStore = Depends(get_store)
):
    ensure_unlocked(store)
    updated = CategoryService(store).allocate_share(category_id, payload)
    if updated is None:
        raise HTTPException(status_code=404, detail="Category not found")
    return dump(updated)


@app.delete(
    "/api/categories/{category_id}",
    status_code=204,
    dependencies=[Depends(require_csrf)],
)
async def delete_category(category_id: str, store: ExpenseStore = Depends(get_store)):
    ensure_unlocked(store)
    service = CategoryService(store)
    if service.get(category_id) is None:
        raise HTTPException(status_code=404, detail="Category not found")
    if not service.delete(category_id):
        raise HTTPException(status_code=409, detail="Category is in use")


@app.get("/api/categories/{category_id}/budget")
async def category_budget(
    category_id: str,
    month: Optional[str] = None,
    store: ExpenseStore = Depends(get_store),
):
    if CategoryService(store).get(category_id) is None:
        raise HTTPException(status_code=404, detail="Category not found")
    budgets = BudgetService(store, month_from_path(month) if month else None)
    return {
        "month": str(budgets.month),
        "budgetCents": budgets.budget(category_id),
        "spentCents": budgets.spent(category_id),
        "remainingCents": budgets.remaining(category_id),
        "progress": budgets.progress(category_id),
    }


@app.get("/api/payment-methods")
async def list_payment_methods(store: ExpenseStore = Depends(get_store)):
    return [dump(m) for m in PaymentMethodService(store).list_all()]


@app.post(
    "/api/payment-methods", status_code=201, dependencies=[Depends(require_csrf)]
)
async def create_payment_method(
    payload: PaymentMethodIn, store: ExpenseStore = Depends(get_store)
):
    ensure_unlocked(store)
    return dump(PaymentMethodService(store).create(payload))


@app.put("/api/payment-methods/{method_id}", dependencies=[Depends(require_csrf)])
async def update_payment_method(
    method_id: str, payload: PaymentMethodIn, store: ExpenseStore = Depends(get_store)
):
    ensure_unlocked(store)
    updated = PaymentMethodService(store).update(method_id, payload)
    if updated is None:
        raise HTTPException(status_code=404, detail="Payment method not found")
    return dump(updated)


@app.delete(
    "/api/payment-methods/{method_id}",
    status_code=204,
    dependencies=[Depends(require_csrf)],
)
async def delete_payment_method(
    method_id: str, store: ExpenseStore = Depends(get_store)
):
    ensure_unlocked(store)
    service = PaymentMethodService(store)
    if service.get(method_id) is None:
        raise HTTPException(status_code=404, detail="Payment method not found")
    if not service.delete(method_id):
        raise HTTPException(status_code=409, detail="Payment method is in use")


@app.get("/api/summary")
async def summary(month: Optional[str] = None, store: ExpenseStore = Depends(get_store)):
    budgets = BudgetService(store, month_from_path(month) if month else None)
    return budgets.summary()


@app.get("/api/history")
async def history(store: ExpenseStore = Depends(get_store)):
    return [dump(s) for s in store.monthly_history]


@app.get("/api/history/{month_key}")
async def history_month(month_key: str, store: ExpenseStore = Depends(get_store)):
    snapshot = store.snapshot(month_from_path(month_key))
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No snapshot for that month")
    return dump(snapshot)


@app.get("/api/export")
async def export_all(store: ExpenseStore = Depends(get_store)):
    return ExportService(store).export_json()
