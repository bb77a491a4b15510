import csv
import re
from io import StringIO
from typing import Mapping, Sequence

from models import ExpenseStatus
from recurrence import ListedExpense, effective_date


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^\.",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def format_amount(cents: int) -> str:
    return f"{cents / 100:.2f}"


def export_month_csv(
    items: Sequence[ListedExpense],
    statuses: Mapping[str, ExpenseStatus],
    category_names: Mapping[str, str],
    payment_method_names: Mapping[str, str],
) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(
        ["Date", "Kind", "Name", "Amount", "Category", "PaymentMethod", "Status"]
    )
    for item in items:
        day = effective_date(item)
        writer.writerow(
            [
                day.isoformat() if day else "",
                "fixed" if item.is_fixed else "variable",
                sanitize_csv_value(item.name),
                format_amount(item.amount_cents),
                sanitize_csv_value(category_names.get(item.category, item.category)),
                sanitize_csv_value(
                    payment_method_names.get(item.payment_method, item.payment_method)
                ),
                statuses[item.id].value,
            ]
        )
    return output.getvalue()
