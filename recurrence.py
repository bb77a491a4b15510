from datetime import date, timedelta
from typing import Iterable, Optional, Protocol, Sequence, Union

from models import (
    Expense,
    ExpenseStatus,
    OccurrenceRef,
    ProjectedOccurrence,
    SortDirection,
    SortField,
)
from periods import MonthLike, coerce_month_key, local_today


class PaymentStatusLookup(Protocol):
    def get_status(self, expense_id: str, month_key: MonthLike) -> bool: ...


ListedExpense = Union[Expense, ProjectedOccurrence]


def projected_due_date(origin_due: date, month: MonthLike) -> date:
    return coerce_month_key(month).clamp(origin_due.day)


def occurrence_ref(expense: Expense, month: MonthLike) -> Optional[OccurrenceRef]:
    origin_month = expense.origin_month
    if origin_month is None:
        return None
    target = coerce_month_key(month)
    if target < origin_month:
        return None
    return OccurrenceRef(
        origin_id=expense.id,
        month_key=target,
        is_origin_month=target == origin_month,
    )


def project_expense(
    expense: Expense, month: MonthLike, ledger: PaymentStatusLookup
) -> Optional[ProjectedOccurrence]:
    ref = occurrence_ref(expense, month)
    if ref is None:
        return None
    if ref.is_origin_month:
        due_date = expense.due_date
        is_paid = expense.is_paid
    else:
        due_date = projected_due_date(expense.due_date, ref.month_key)
        is_paid = ledger.get_status(expense.id, ref.month_key)
    return ProjectedOccurrence(
        id=ref.occurrence_id,
        origin_id=expense.id,
        month_key=str(ref.month_key),
        name=expense.name,
        amount_cents=expense.amount_cents,
        category=expense.category,
        payment_method=expense.payment_method,
        due_date=due_date,
        is_paid=is_paid,
    )


def project_fixed_expenses(
    expenses: Iterable[Expense], ledger: PaymentStatusLookup, month: MonthLike
) -> list[ProjectedOccurrence]:
    """Fixed expenses visible in ``month``, with due dates moved into it.

    Origin records are never modified; occurrences for later months get their
    paid flag from ``ledger``. Result order follows ``expenses``.
    """
    target = coerce_month_key(month)
    occurrences: list[ProjectedOccurrence] = []
    for expense in expenses:
        if not expense.is_fixed:
            continue
        occurrence = project_expense(expense, target, ledger)
        if occurrence is not None:
            occurrences.append(occurrence)
    return occurrences


def effective_date(item: ListedExpense) -> Optional[date]:
    if item.is_fixed:
        return item.due_date
    return item.date


def expense_status(
    item: ListedExpense, today: Optional[date] = None
) -> ExpenseStatus:
    if not item.is_fixed:
        return ExpenseStatus.pending
    if item.is_paid:
        return ExpenseStatus.paid
    if item.due_date is None:
        return ExpenseStatus.pending
    today = today or local_today()
    if today >= item.due_date + timedelta(days=1):
        return ExpenseStatus.overdue
    return ExpenseStatus.pending


def sort_expenses(
    items: Sequence[ListedExpense],
    field: SortField = SortField.date,
    direction: SortDirection = SortDirection.asc,
) -> list[ListedExpense]:
    reverse = direction == SortDirection.desc
    if field == SortField.name:
        return sorted(items, key=lambda item: item.name.casefold(), reverse=reverse)
    if field == SortField.amount:
        return sorted(items, key=lambda item: item.amount_cents, reverse=reverse)

    # Undated records sort last in either direction.
    dated = [item for item in items if effective_date(item) is not None]
    undated = [item for item in items if effective_date(item) is None]
    return sorted(dated, key=effective_date, reverse=reverse) + undated
