from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterable, Optional, TypeVar, Union

from pydantic import BaseModel, ValidationError
from rapidfuzz.distance import Levenshtein

from config import get_settings
from models import (
    CustomCategory,
    CustomPaymentMethod,
    Expense,
    ExpenseKind,
    ExpenseStatus,
    MonthlyData,
    MonthlyPaymentStatus,
    NavigationDirection,
    OccurrenceRef,
    ProjectedOccurrence,
    SortDirection,
    SortField,
    StorageKey,
)
from periods import (
    MonthKey,
    MonthLike,
    coerce_month_key,
    current_month_key,
    local_today,
)
from recurrence import (
    ListedExpense,
    expense_status,
    project_fixed_expenses,
    sort_expenses,
)
from schemas import (
    CategoryIn,
    CategoryShareIn,
    FixedExpenseIn,
    PaymentMethodIn,
    VariableExpenseIn,
)
from storage import KeyValueStorage

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)

DEFAULT_CATEGORIES: tuple[tuple[str, str, str], ...] = (
    ("MONTHLY_BILLS", "Monthly bills", "#FF6384"),
    ("GROCERIES", "Groceries", "#36A2EB"),
    ("LEISURE", "Leisure", "#FFCE56"),
    ("FUEL", "Fuel", "#4BC0C0"),
    ("OTHER", "Other", "#9966FF"),
)
DEFAULT_PAYMENT_METHODS: tuple[tuple[str, str, str], ...] = (
    ("PIX", "PIX", "#32BCAD"),
    ("CARD", "Card", "#FF9F40"),
    ("CASH", "Cash", "#8AC249"),
    ("OTHER", "Other", "#EA5545"),
)


class StoreNotLoadedError(RuntimeError):
    pass


def new_id() -> str:
    return uuid.uuid4().hex


def _dump(records: Iterable[BaseModel]) -> list[dict[str, Any]]:
    return [record.model_dump(mode="json", by_alias=True) for record in records]


def _load_records(raw: Any, model: type[RecordT], key: StorageKey) -> list[RecordT]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        logger.warning(f"storage_value_ignored: key={key.value} expected a list")
        return []
    records: list[RecordT] = []
    for item in raw:
        try:
            records.append(model.model_validate(item))
        except ValidationError as exc:
            logger.warning(
                f"storage_record_skipped: key={key.value} errors={exc.error_count()}"
            )
    return records


def _load_reset_day(raw: Any) -> int:
    default = get_settings().default_reset_day
    if isinstance(raw, bool):
        return default
    try:
        day = int(raw)
    except (TypeError, ValueError):
        return default
    return day if 1 <= day <= 31 else default


class PaymentStatusLedger:
    """Per-month paid flags for fixed expenses, keyed by origin id.

    The origin record's own ``is_paid`` only speaks for its origin month; every
    other month is unpaid until an entry says otherwise.
    """

    def __init__(
        self,
        origin_lookup: Callable[[str], Optional[Expense]],
        entries: Iterable[MonthlyPaymentStatus] = (),
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        self._origin_lookup = origin_lookup
        self._on_change = on_change
        self._entries: dict[tuple[str, str], bool] = {}
        self.replace(entries)

    def replace(self, entries: Iterable[MonthlyPaymentStatus]) -> None:
        self._entries = {
            (entry.expense_id, entry.month_key): entry.is_paid for entry in entries
        }

    @property
    def entries(self) -> list[MonthlyPaymentStatus]:
        return [
            MonthlyPaymentStatus(expense_id=expense_id, month_key=month, is_paid=paid)
            for (expense_id, month), paid in self._entries.items()
        ]

    def has_entry(self, expense_id: str, month_key: MonthLike) -> bool:
        return (expense_id, str(coerce_month_key(month_key))) in self._entries

    def get_status(self, expense_id: str, month_key: MonthLike) -> bool:
        month = coerce_month_key(month_key)
        explicit = self._entries.get((expense_id, str(month)))
        if explicit is not None:
            return explicit
        origin = self._origin_lookup(expense_id)
        if origin is not None and origin.origin_month == month:
            return origin.is_paid
        return False

    def set_status(self, expense_id: str, month_key: MonthLike, is_paid: bool) -> None:
        month = coerce_month_key(month_key)
        self._entries[(expense_id, str(month))] = bool(is_paid)
        self._changed()

    def purge_through(self, expense_id: str, month_key: MonthLike) -> int:
        """Drop entries for ``expense_id`` in ``month_key`` and earlier."""
        last = coerce_month_key(month_key)
        stale = [
            key
            for key in self._entries
            if key[0] == expense_id and MonthKey.parse(key[1]) <= last
        ]
        for key in stale:
            del self._entries[key]
        if stale:
            self._changed()
        return len(stale)

    def purge(self, expense_id: str) -> int:
        stale = [key for key in self._entries if key[0] == expense_id]
        for key in stale:
            del self._entries[key]
        if stale:
            self._changed()
        return len(stale)

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()


class ExpenseStore:
    """In-memory owner of every expense record, backed by ``KeyValueStorage``.

    Commands apply to memory first, then persist the touched keys and run the
    monthly rollover check. Commands return ``None``/``False`` when rejected
    (store locked, unknown id) instead of raising.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        *,
        today_provider: Callable[[], date] = local_today,
    ) -> None:
        self.storage = storage
        self._today = today_provider
        self._loaded = False
        self._fixed: list[Expense] = []
        self._variable: list[Expense] = []
        self._categories: list[CustomCategory] = []
        self._payment_methods: list[CustomPaymentMethod] = []
        self._history: list[MonthlyData] = []
        self._reset_day = get_settings().default_reset_day
        self._is_locked = False
        self._sync_enabled = False
        self._current_month: Optional[MonthKey] = None
        self.ledger = PaymentStatusLedger(
            self.find_fixed,
            on_change=lambda: self._persist(StorageKey.monthly_payment_status),
        )

    # -- lifecycle -----------------------------------------------------------

    def load(self) -> "ExpenseStore":
        values = self.storage.load_all()

        fixed = _load_records(
            values.get(StorageKey.fixed_expenses.value), Expense, StorageKey.fixed_expenses
        )
        self._fixed = [
            e if e.is_fixed else e.model_copy(update={"is_fixed": True}) for e in fixed
        ]
        variable = _load_records(
            values.get(StorageKey.variable_expenses.value),
            Expense,
            StorageKey.variable_expenses,
        )
        self._variable = [
            e.model_copy(update={"is_fixed": False}) if e.is_fixed else e
            for e in variable
        ]
        self.ledger.replace(
            _load_records(
                values.get(StorageKey.monthly_payment_status.value),
                MonthlyPaymentStatus,
                StorageKey.monthly_payment_status,
            )
        )

        self._history = []
        seen_months: set[str] = set()
        for snapshot in _load_records(
            values.get(StorageKey.monthly_history.value),
            MonthlyData,
            StorageKey.monthly_history,
        ):
            if snapshot.month_key in seen_months:
                logger.warning(f"history_duplicate_dropped: month={snapshot.month_key}")
                continue
            seen_months.add(snapshot.month_key)
            self._history.append(snapshot)

        self._reset_day = _load_reset_day(values.get(StorageKey.reset_day.value))
        self._is_locked = values.get(StorageKey.is_locked.value) is True
        self._sync_enabled = values.get(StorageKey.sync_with_firebase.value) is True

        seeded: list[StorageKey] = []
        if StorageKey.custom_categories.value in values:
            self._categories = _load_records(
                values[StorageKey.custom_categories.value],
                CustomCategory,
                StorageKey.custom_categories,
            )
        else:
            self._categories = [
                CustomCategory(id=cid, name=name, budget_cents=0, color=color)
                for cid, name, color in DEFAULT_CATEGORIES
            ]
            seeded.append(StorageKey.custom_categories)
        if StorageKey.custom_payment_methods.value in values:
            self._payment_methods = _load_records(
                values[StorageKey.custom_payment_methods.value],
                CustomPaymentMethod,
                StorageKey.custom_payment_methods,
            )
        else:
            self._payment_methods = [
                CustomPaymentMethod(id=pid, name=name, color=color)
                for pid, name, color in DEFAULT_PAYMENT_METHODS
            ]
            seeded.append(StorageKey.custom_payment_methods)

        self._current_month = current_month_key(self._today())
        self._loaded = True
        logger.info(
            f"store_loaded: fixed={len(self._fixed)} variable={len(self._variable)} "
            f"snapshots={len(self._history)}"
        )
        if seeded:
            self._persist(*seeded)
        self._after_mutation()
        return self

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def _require_loaded(self) -> None:
        if not self._loaded:
            raise StoreNotLoadedError("ExpenseStore used before load()")

    def today(self) -> date:
        return self._today()

    # -- state ---------------------------------------------------------------

    @property
    def fixed_expenses(self) -> list[Expense]:
        self._require_loaded()
        return self._fixed

    @property
    def variable_expenses(self) -> list[Expense]:
        self._require_loaded()
        return self._variable

    @property
    def categories(self) -> list[CustomCategory]:
        self._require_loaded()
        return self._categories

    @property
    def payment_methods(self) -> list[CustomPaymentMethod]:
        self._require_loaded()
        return self._payment_methods

    @property
    def monthly_history(self) -> list[MonthlyData]:
        self._require_loaded()
        return list(self._history)

    @property
    def reset_day(self) -> int:
        self._require_loaded()
        return self._reset_day

    @property
    def is_locked(self) -> bool:
        self._require_loaded()
        return self._is_locked

    @property
    def sync_enabled(self) -> bool:
        self._require_loaded()
        return self._sync_enabled

    @property
    def current_month(self) -> MonthKey:
        self._require_loaded()
        return self._current_month

    def find_fixed(self, expense_id: str) -> Optional[Expense]:
        self._require_loaded()
        return next((e for e in self._fixed if e.id == expense_id), None)

    def find_variable(self, expense_id: str) -> Optional[Expense]:
        self._require_loaded()
        return next((e for e in self._variable if e.id == expense_id), None)

    def snapshot(self, month_key: MonthLike) -> Optional[MonthlyData]:
        self._require_loaded()
        key = str(coerce_month_key(month_key))
        return next((s for s in self._history if s.month_key == key), None)

    # -- persistence ---------------------------------------------------------

    def _serialize(self, key: StorageKey) -> Any:
        if key == StorageKey.fixed_expenses:
            return _dump(self._fixed)
        if key == StorageKey.variable_expenses:
            return _dump(self._variable)
        if key == StorageKey.custom_categories:
            return _dump(self._categories)
        if key == StorageKey.custom_payment_methods:
            return _dump(self._payment_methods)
        if key == StorageKey.monthly_payment_status:
            return _dump(self.ledger.entries)
        if key == StorageKey.monthly_history:
            return _dump(self._history)
        if key == StorageKey.reset_day:
            return self._reset_day
        if key == StorageKey.is_locked:
            return self._is_locked
        return self._sync_enabled

    def _persist(self, *keys: StorageKey) -> None:
        for key in keys:
            self.storage.write(key, self._serialize(key))

    def _after_mutation(self) -> None:
        RolloverService(self).check()

    def commit(self, *keys: StorageKey) -> None:
        self._require_loaded()
        self._persist(*keys)
        self._after_mutation()

    def _reject_if_locked(self, action: str) -> bool:
        self._require_loaded()
        if self._is_locked:
            logger.info(f"store_locked: rejected {action}")
            return True
        return False

    # -- expense commands ----------------------------------------------------

    def add_fixed(self, data: FixedExpenseIn) -> Optional[Expense]:
        if self._reject_if_locked("add_fixed"):
            return None
        expense = Expense(
            id=new_id(),
            name=data.name,
            amount_cents=data.amount_cents,
            category=data.category,
            payment_method=data.payment_method,
            is_fixed=True,
            due_date=data.due_date,
            is_paid=data.is_paid,
        )
        self._fixed.append(expense)
        self.commit(StorageKey.fixed_expenses)
        return expense

    def add_variable(self, data: VariableExpenseIn) -> Optional[Expense]:
        if self._reject_if_locked("add_variable"):
            return None
        expense = Expense(
            id=new_id(),
            name=data.name,
            amount_cents=data.amount_cents,
            category=data.category,
            payment_method=data.payment_method,
            is_fixed=False,
            date=data.date,
        )
        self._variable.append(expense)
        self.commit(StorageKey.variable_expenses)
        return expense

    def update_fixed(self, expense_id: str, data: FixedExpenseIn) -> Optional[Expense]:
        if self._reject_if_locked("update_fixed"):
            return None
        for idx, current in enumerate(self._fixed):
            if current.id != expense_id:
                continue
            updated = current.model_copy(update=data.model_dump())
            self._fixed[idx] = updated
            self._persist(StorageKey.fixed_expenses)
            if updated.origin_month != current.origin_month:
                # Months up to the new origin month are no longer ledger-backed.
                self.ledger.purge_through(updated.id, updated.origin_month)
            self._after_mutation()
            return updated
        return None

    def update_variable(
        self, expense_id: str, data: VariableExpenseIn
    ) -> Optional[Expense]:
        if self._reject_if_locked("update_variable"):
            return None
        for idx, current in enumerate(self._variable):
            if current.id != expense_id:
                continue
            updated = current.model_copy(update=data.model_dump())
            self._variable[idx] = updated
            self.commit(StorageKey.variable_expenses)
            return updated
        return None

    def delete_fixed(self, expense_id: str) -> bool:
        if self._reject_if_locked("delete_fixed"):
            return False
        remaining = [e for e in self._fixed if e.id != expense_id]
        if len(remaining) == len(self._fixed):
            return False
        self._fixed = remaining
        self._persist(StorageKey.fixed_expenses)
        purged = self.ledger.purge(expense_id)
        logger.info(f"fixed_expense_deleted: id={expense_id} ledger_entries={purged}")
        self._after_mutation()
        return True

    def delete_variable(self, expense_id: str) -> bool:
        if self._reject_if_locked("delete_variable"):
            return False
        remaining = [e for e in self._variable if e.id != expense_id]
        if len(remaining) == len(self._variable):
            return False
        self._variable = remaining
        self.commit(StorageKey.variable_expenses)
        return True

    def set_expense_payment_status(
        self, expense_id: str, month_key: MonthLike, is_paid: bool
    ) -> bool:
        """Mark one month of a fixed expense paid or unpaid.

        The origin month lives on the origin record itself; every later month
        goes to the ledger.
        """
        if self._reject_if_locked("set_expense_payment_status"):
            return False
        expense = self.find_fixed(expense_id)
        month = coerce_month_key(month_key)
        if expense is None or expense.origin_month is None:
            return False
        if month < expense.origin_month:
            return False
        if month == expense.origin_month:
            idx = self._fixed.index(expense)
            self._fixed[idx] = expense.model_copy(update={"is_paid": bool(is_paid)})
            self.commit(StorageKey.fixed_expenses)
            return True
        self.ledger.set_status(expense_id, month, is_paid)
        self._after_mutation()
        return True

    def resolve_occurrence_id(self, occurrence_id: str) -> Optional[OccurrenceRef]:
        """Translate an occurrence id (``<origin>`` or ``<origin>_<YYYY-MM>``)."""
        origin = self.find_fixed(occurrence_id)
        if origin is not None:
            if origin.origin_month is None:
                return None
            return OccurrenceRef(
                origin_id=origin.id,
                month_key=origin.origin_month,
                is_origin_month=True,
            )
        origin_id, sep, month_raw = occurrence_id.rpartition("_")
        if not sep:
            return None
        origin = self.find_fixed(origin_id)
        if origin is None or origin.origin_month is None:
            return None
        try:
            month = MonthKey.parse(month_raw)
        except ValueError:
            return None
        if month <= origin.origin_month:
            return None
        return OccurrenceRef(origin_id=origin.id, month_key=month, is_origin_month=False)

    # -- queries -------------------------------------------------------------

    def project_fixed_expenses(
        self, month_key: Optional[MonthLike] = None
    ) -> list[ProjectedOccurrence]:
        self._require_loaded()
        month = coerce_month_key(month_key) if month_key else self._current_month
        return project_fixed_expenses(self._fixed, self.ledger, month)

    def variable_expenses_for_month(
        self, month_key: Optional[MonthLike] = None
    ) -> list[Expense]:
        self._require_loaded()
        month = coerce_month_key(month_key) if month_key else self._current_month
        return [e for e in self._variable if e.date and month.contains(e.date)]

    def expense_status(
        self, item: ListedExpense, today: Optional[date] = None
    ) -> ExpenseStatus:
        return expense_status(item, today or self._today())

    # -- settings ------------------------------------------------------------

    def set_reset_day(self, day: int) -> bool:
        self._require_loaded()
        if isinstance(day, bool) or not isinstance(day, int) or not 1 <= day <= 31:
            return False
        self._reset_day = day
        self.commit(StorageKey.reset_day)
        return True

    def toggle_lock(self) -> bool:
        self._require_loaded()
        self._is_locked = not self._is_locked
        self.commit(StorageKey.is_locked)
        return self._is_locked

    def toggle_sync(self) -> bool:
        self._require_loaded()
        self._sync_enabled = not self._sync_enabled
        if self._sync_enabled:
            logger.info("sync_flag_enabled: remote sync is not available, flag only")
        self.commit(StorageKey.sync_with_firebase)
        return self._sync_enabled

    def set_current_month(self, month_key: MonthLike) -> MonthKey:
        self._require_loaded()
        self._current_month = coerce_month_key(month_key)
        return self._current_month

    def navigate_month(self, direction: Union[NavigationDirection, str]) -> MonthKey:
        self._require_loaded()
        step = -1 if NavigationDirection(direction) == NavigationDirection.prev else 1
        self._current_month = self._current_month.shift(step)
        return self._current_month

    # -- archiving -----------------------------------------------------------

    def archive(self, snapshot: MonthlyData) -> bool:
        """Append ``snapshot`` and clear variable expenses, once per month.

        ``snapshot.variable_expenses`` holds every record being cleared.
        """
        self._require_loaded()
        if self.snapshot(snapshot.month_key) is not None:
            return False
        self._history.append(snapshot)
        self._variable = []
        self._persist(StorageKey.monthly_history, StorageKey.variable_expenses)
        return True


def _referencing_expenses(store: ExpenseStore, field: str, ref_id: str) -> int:
    expenses = store.fixed_expenses + store.variable_expenses
    return sum(1 for e in expenses if getattr(e, field) == ref_id)


class CategoryService:
    def __init__(self, store: ExpenseStore) -> None:
        self.store = store

    def list_all(self) -> list[CustomCategory]:
        return list(self.store.categories)

    def get(self, category_id: str) -> Optional[CustomCategory]:
        return next((c for c in self.store.categories if c.id == category_id), None)

    def create(self, data: CategoryIn) -> Optional[CustomCategory]:
        if self.store.is_locked:
            return None
        category = CustomCategory(id=new_id(), **data.model_dump())
        self.store.categories.append(category)
        self.store.commit(StorageKey.custom_categories)
        return category

    def update(self, category_id: str, data: CategoryIn) -> Optional[CustomCategory]:
        if self.store.is_locked:
            return None
        return self._replace(category_id, data.model_dump())

    def allocate_share(
        self, category_id: str, data: CategoryShareIn
    ) -> Optional[CustomCategory]:
        """Set the category budget to ``share`` of a monthly total."""
        if self.store.is_locked:
            return None
        budget = int(round(data.monthly_total_cents * data.share))
        return self._replace(category_id, {"budget_cents": budget})

    def delete(self, category_id: str) -> bool:
        if self.store.is_locked or self.get(category_id) is None:
            return False
        in_use = _referencing_expenses(self.store, "category", category_id)
        if in_use:
            logger.warning(
                f"category_delete_refused: id={category_id} referenced_by={in_use}"
            )
            return False
        categories = self.store.categories
        categories[:] = [c for c in categories if c.id != category_id]
        self.store.commit(StorageKey.custom_categories)
        return True

    def _replace(
        self, category_id: str, changes: dict[str, Any]
    ) -> Optional[CustomCategory]:
        categories = self.store.categories
        for idx, current in enumerate(categories):
            if current.id == category_id:
                categories[idx] = current.model_copy(update=changes)
                self.store.commit(StorageKey.custom_categories)
                return categories[idx]
        return None


class PaymentMethodService:
    def __init__(self, store: ExpenseStore) -> None:
        self.store = store

    def list_all(self) -> list[CustomPaymentMethod]:
        return list(self.store.payment_methods)

    def get(self, method_id: str) -> Optional[CustomPaymentMethod]:
        return next((m for m in self.store.payment_methods if m.id == method_id), None)

    def create(self, data: PaymentMethodIn) -> Optional[CustomPaymentMethod]:
        if self.store.is_locked:
            return None
        method = CustomPaymentMethod(id=new_id(), **data.model_dump())
        self.store.payment_methods.append(method)
        self.store.commit(StorageKey.custom_payment_methods)
        return method

    def update(
        self, method_id: str, data: PaymentMethodIn
    ) -> Optional[CustomPaymentMethod]:
        if self.store.is_locked:
            return None
        methods = self.store.payment_methods
        for idx, current in enumerate(methods):
            if current.id == method_id:
                methods[idx] = current.model_copy(update=data.model_dump())
                self.store.commit(StorageKey.custom_payment_methods)
                return methods[idx]
        return None

    def delete(self, method_id: str) -> bool:
        if self.store.is_locked or self.get(method_id) is None:
            return False
        in_use = _referencing_expenses(self.store, "payment_method", method_id)
        if in_use:
            logger.warning(
                f"payment_method_delete_refused: id={method_id} referenced_by={in_use}"
            )
            return False
        methods = self.store.payment_methods
        methods[:] = [m for m in methods if m.id != method_id]
        self.store.commit(StorageKey.custom_payment_methods)
        return True


class BudgetService:
    """Budget figures for one month (the store's viewed month by default).

    Spending counts paid fixed occurrences plus variable expenses dated in the
    month.
    """

    def __init__(
        self, store: ExpenseStore, month_key: Optional[MonthLike] = None
    ) -> None:
        self.store = store
        self.month = coerce_month_key(month_key) if month_key else store.current_month

    def paid_fixed(self) -> list[ProjectedOccurrence]:
        return [o for o in self.store.project_fixed_expenses(self.month) if o.is_paid]

    def variable(self) -> list[Expense]:
        return self.store.variable_expenses_for_month(self.month)

    def fixed_paid_total(self) -> int:
        return sum(o.amount_cents for o in self.paid_fixed())

    def variable_total(self) -> int:
        return sum(e.amount_cents for e in self.variable())

    def _spending(self) -> list[ListedExpense]:
        return [*self.paid_fixed(), *self.variable()]

    def budget(self, category_id: str) -> int:
        category = CategoryService(self.store).get(category_id)
        return category.budget_cents if category else 0

    def total_budget(self) -> int:
        return sum(c.budget_cents for c in self.store.categories)

    def spent(self, category_id: str) -> int:
        return sum(
            item.amount_cents
            for item in self._spending()
            if item.category == category_id
        )

    def remaining(self, category_id: str) -> int:
        return self.budget(category_id) - self.spent(category_id)

    def progress(self, category_id: str) -> float:
        budget = self.budget(category_id)
        if budget <= 0:
            return 0.0
        return self.spent(category_id) / budget * 100

    def spent_by_category(self) -> dict[str, int]:
        totals: dict[str, int] = {c.id: 0 for c in self.store.categories}
        for item in self._spending():
            totals[item.category] = totals.get(item.category, 0) + item.amount_cents
        return totals

    def spent_by_payment_method(self) -> dict[str, int]:
        totals: dict[str, int] = {m.id: 0 for m in self.store.payment_methods}
        for item in self._spending():
            totals[item.payment_method] = (
                totals.get(item.payment_method, 0) + item.amount_cents
            )
        return totals

    def total_spent(self) -> int:
        return sum(item.amount_cents for item in self._spending())

    def remaining_budget(self) -> int:
        return self.total_budget() - self.total_spent()

    def summary(self) -> dict[str, object]:
        total_budget = self.total_budget()
        fixed_paid = self.fixed_paid_total()
        variable = self.variable_total()
        total = fixed_paid + variable

        def percent(amount: int) -> float:
            return (amount / total_budget * 100) if total_budget > 0 else 0.0

        return {
            "month": str(self.month),
            "total_budget_cents": total_budget,
            "total_spent_cents": total,
            "remaining_cents": total_budget - total,
            "fixed_paid_cents": fixed_paid,
            "variable_cents": variable,
            "fixed_percent": percent(fixed_paid),
            "variable_percent": percent(variable),
            "total_percent": percent(total),
            "by_payment_method": self.spent_by_payment_method(),
            "categories": [
                {
                    "id": category.id,
                    "name": category.name,
                    "color": category.color,
                    "budget_cents": category.budget_cents,
                    "spent_cents": self.spent(category.id),
                    "remaining_cents": self.remaining(category.id),
                    "progress": self.progress(category.id),
                }
                for category in self.store.categories
            ],
        }


class RolloverService:
    def __init__(self, store: ExpenseStore) -> None:
        self.store = store

    def is_due(self, today: date) -> bool:
        if today.day != self.store.reset_day:
            return False
        return self.store.snapshot(MonthKey.of(today)) is None

    def build_snapshot(self, month_key: MonthLike) -> MonthlyData:
        month = coerce_month_key(month_key)
        budgets = BudgetService(self.store, month)
        fixed = self.store.project_fixed_expenses(month)
        cleared = tuple(self.store.variable_expenses)
        total = sum(o.amount_cents for o in fixed if o.is_paid) + sum(
            e.amount_cents for e in budgets.variable()
        )
        return MonthlyData(
            id=str(month),
            month_key=str(month),
            fixed_expenses=tuple(fixed),
            variable_expenses=cleared,
            total_spent_cents=total,
            budget_cents=budgets.total_budget(),
            created_at=datetime.now(timezone.utc),
        )

    def check(self, today: Optional[date] = None) -> Optional[MonthlyData]:
        today = today or self.store.today()
        if not self.is_due(today):
            return None
        snapshot = self.build_snapshot(MonthKey.of(today))
        if not self.store.archive(snapshot):
            return None
        logger.info(
            f"month_archived: month={snapshot.month_key} "
            f"total_spent_cents={snapshot.total_spent_cents} "
            f"variable_cleared={len(snapshot.variable_expenses)}"
        )
        return snapshot


def matches_query(name: str, query: Optional[str]) -> bool:
    needle = (query or "").strip().casefold()
    if not needle:
        return True
    haystack = name.casefold()
    if needle in haystack:
        return True
    if len(needle) < 4:
        return False
    return any(
        Levenshtein.distance(needle, word) <= 1 for word in haystack.split()
    )


@dataclass
class ExpenseFilters:
    kind: ExpenseKind = ExpenseKind.all
    query: Optional[str] = None
    paid: Optional[bool] = None
    sort: SortField = SortField.date
    direction: SortDirection = SortDirection.desc


class ExpenseQueryService:
    def __init__(self, store: ExpenseStore) -> None:
        self.store = store

    def list_for_month(
        self,
        month_key: Optional[MonthLike] = None,
        filters: Optional[ExpenseFilters] = None,
    ) -> list[ListedExpense]:
        filters = filters or ExpenseFilters()
        items: list[ListedExpense] = []
        if filters.kind in (ExpenseKind.all, ExpenseKind.fixed):
            items.extend(self.store.project_fixed_expenses(month_key))
        if filters.kind in (ExpenseKind.all, ExpenseKind.variable):
            items.extend(self.store.variable_expenses_for_month(month_key))

        if filters.paid is not None:
            # Paid status only exists for fixed occurrences.
            items = [i for i in items if i.is_fixed and i.is_paid == filters.paid]
        items = [i for i in items if matches_query(i.name, filters.query)]
        return sort_expenses(items, filters.sort, filters.direction)

    def recent_variable(self, limit: int = 5) -> list[Expense]:
        dated = sort_expenses(
            self.store.variable_expenses, SortField.date, SortDirection.desc
        )
        return dated[:limit]


class ExportService:
    def __init__(self, store: ExpenseStore) -> None:
        self.store = store

    def export_json(self) -> dict[str, object]:
        store = self.store
        return {
            "exportDate": datetime.now(timezone.utc).isoformat(),
            "monthlyBudgetCents": BudgetService(store).total_budget(),
            "resetDay": store.reset_day,
            "fixedExpenses": _dump(store.fixed_expenses),
            "variableExpenses": _dump(store.variable_expenses),
            "customCategories": _dump(store.categories),
            "customPaymentMethods": _dump(store.payment_methods),
            "monthlyPaymentStatus": _dump(store.ledger.entries),
            "monthlyHistory": _dump(store.monthly_history),
        }
