"""Presentation helpers applied at the HTTP boundary.

Amounts are stored as integer cents; everything leaving the API is a decimal
amount with two places, plus the display strings the client renders.
"""

from datetime import datetime

from models import Transaction, User
from schemas import TransactionOut, UserOut


def cents_to_amount(cents: float) -> float:
    return round(cents / 100, 2)


def format_amount(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    return f"{sign}${abs(cents) / 100:,.2f}"


def format_date(value: datetime) -> str:
    return f"{value.strftime('%B')} {value.day}, {value.year}"


def user_payload(user: User) -> dict[str, object]:
    return UserOut.model_validate(user).model_dump(mode="json", by_alias=True)


def transaction_payload(txn: Transaction) -> dict[str, object]:
    out = TransactionOut(
        id=txn.id,
        type=txn.type,
        amount=cents_to_amount(txn.amount_cents),
        category=txn.category,
        description=txn.description,
        date=txn.date,
        tags=list(txn.tags),
        is_recurring=txn.is_recurring,
        recurring_interval=txn.recurring_interval,
        attachments=txn.attachments or [],
        created_at=txn.created_at,
        updated_at=txn.updated_at,
        formatted_amount=format_amount(txn.amount_cents),
        formatted_date=format_date(txn.date),
    )
    return out.model_dump(mode="json", by_alias=True)


def page_payload(page) -> dict[str, object]:
    return {
        "transactions": [transaction_payload(txn) for txn in page.items],
        "pagination": {
            "currentPage": page.page,
            "totalPages": page.total_pages,
            "totalItems": page.total,
            "itemsPerPage": page.limit,
            "hasNextPage": page.has_next,
            "hasPrevPage": page.has_prev,
        },
    }


def stats_payload(stats) -> dict[str, object]:
    totals = stats.totals
    return {
        "period": stats.period,
        "stats": {
            "totalIncome": cents_to_amount(totals.income_cents),
            "totalExpenses": cents_to_amount(totals.expense_cents),
            "netAmount": cents_to_amount(totals.net_cents),
            "totalTransactions": totals.count,
            "avgTransactionAmount": cents_to_amount(totals.avg_cents),
            "minAmount": cents_to_amount(totals.min_cents),
            "maxAmount": cents_to_amount(totals.max_cents),
        },
        "categoryStats": [
            {
                "category": row.category,
                "total": cents_to_amount(row.total_cents),
                "count": row.count,
                "avgAmount": cents_to_amount(row.avg_cents),
            }
            for row in stats.categories
        ],
        "monthlyStats": [
            {
                "year": row.year,
                "month": row.month,
                "income": cents_to_amount(row.income_cents),
                "expenses": cents_to_amount(row.expense_cents),
            }
            for row in stats.monthly
        ],
    }


def category_usage_payload(rows) -> list[dict[str, object]]:
    return [
        {
            "category": row.category,
            "count": row.count,
            "totalAmount": cents_to_amount(row.total_cents),
            "avgAmount": cents_to_amount(row.avg_cents),
        }
        for row in rows
    ]
