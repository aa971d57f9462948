from datetime import datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import TransactionType, User
from periods import resolve_period
from presenters import stats_payload
from schemas import TransactionIn
from services import MetricsService, TransactionService

NOW = datetime(2024, 1, 20, 15, 30)


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _user(session: Session, email: str = "ada@example.com") -> User:
    user = User(name="Ada", email=email, password_hash="x")
    session.add(user)
    session.commit()
    return user


def _add(
    session: Session,
    user_id: int,
    txn_type: TransactionType,
    amount: str,
    category: str,
    when: datetime,
) -> None:
    TransactionService(session, user_id).create(
        TransactionIn(
            type=txn_type, amount=Decimal(amount), category=category, date=when
        )
    )


def test_month_stats_include_expense_from_mid_month() -> None:
    with _session() as session:
        user = _user(session)
        _add(
            session,
            user.id,
            TransactionType.expense,
            "42.50",
            "Food & Dining",
            datetime(2024, 1, 15),
        )

        stats = MetricsService(session, user.id).stats(
            resolve_period("month", now=NOW), now=NOW
        )
        payload = stats_payload(stats)

        assert payload["period"] == "month"
        assert payload["stats"]["totalExpenses"] == 42.5
        assert payload["stats"]["netAmount"] == -42.5
        assert payload["categoryStats"] == [
            {"category": "Food & Dining", "total": 42.5, "count": 1, "avgAmount": 42.5}
        ]
        assert payload["monthlyStats"] == [
            {"year": 2024, "month": 1, "income": 0.0, "expenses": 42.5}
        ]


def test_net_amount_is_income_minus_expenses() -> None:
    with _session() as session:
        user = _user(session)
        _add(session, user.id, TransactionType.income, "1000", "Salary", NOW)
        _add(session, user.id, TransactionType.expense, "250.25", "Rent", NOW)
        _add(session, user.id, TransactionType.expense, "49.75", "Food", NOW)

        totals = MetricsService(session, user.id).totals(resolve_period("all"))

        assert totals.income_cents == 100000
        assert totals.expense_cents == 30000
        assert totals.net_cents == 70000
        assert totals.count == 3
        assert totals.min_cents == 4975
        assert totals.max_cents == 100000


def test_empty_window_reports_zeroes() -> None:
    with _session() as session:
        user = _user(session)
        _add(
            session,
            user.id,
            TransactionType.expense,
            "10",
            "Food",
            datetime(2023, 12, 1),
        )

        stats = MetricsService(session, user.id).stats(
            resolve_period("today", now=NOW), now=NOW
        )
        payload = stats_payload(stats)

        assert payload["stats"] == {
            "totalIncome": 0.0,
            "totalExpenses": 0.0,
            "netAmount": 0.0,
            "totalTransactions": 0,
            "avgTransactionAmount": 0.0,
            "minAmount": 0.0,
            "maxAmount": 0.0,
        }
        assert payload["categoryStats"] == []
        # the monthly series ignores the selected period
        assert payload["monthlyStats"] == [
            {"year": 2023, "month": 12, "income": 0.0, "expenses": 10.0}
        ]


def test_stats_are_scoped_to_user() -> None:
    with _session() as session:
        ada = _user(session, "ada@example.com")
        grace = _user(session, "grace@example.com")
        _add(session, grace.id, TransactionType.income, "500", "Salary", NOW)

        totals = MetricsService(session, ada.id).totals(resolve_period("all"))

        assert totals.count == 0
        assert totals.income_cents == 0


def test_category_breakdown_keeps_top_ten_by_total() -> None:
    with _session() as session:
        user = _user(session)
        for index in range(12):
            _add(
                session,
                user.id,
                TransactionType.expense,
                str(index + 1),
                f"Category {index:02d}",
                NOW,
            )

        rows = MetricsService(session, user.id).category_breakdown(
            resolve_period("all")
        )

        assert len(rows) == 10
        assert rows[0].category == "Category 11"
        assert rows[-1].category == "Category 02"


def test_monthly_series_covers_trailing_year_in_order() -> None:
    with _session() as session:
        user = _user(session)
        _add(
            session,
            user.id,
            TransactionType.expense,
            "99",
            "Old",
            datetime(2022, 12, 31),
        )
        _add(
            session,
            user.id,
            TransactionType.income,
            "100",
            "Pay",
            datetime(2023, 3, 1),
        )
        _add(
            session,
            user.id,
            TransactionType.expense,
            "30",
            "Food",
            datetime(2023, 3, 9),
        )
        _add(
            session,
            user.id,
            TransactionType.income,
            "200",
            "Pay",
            datetime(2024, 1, 2),
        )

        series = MetricsService(session, user.id).monthly_series(now=NOW)

        assert [(m.year, m.month) for m in series] == [(2023, 3), (2024, 1)]
        assert series[0].income_cents == 10000
        assert series[0].expense_cents == 3000
        assert series[1].income_cents == 20000


def test_month_window_follows_configured_timezone() -> None:
    tokyo = ZoneInfo("Asia/Tokyo")
    with _session() as session:
        user = _user(session)
        # Feb 1st 01:00 in Tokyo
        _add(
            session,
            user.id,
            TransactionType.expense,
            "7",
            "Food",
            datetime(2024, 1, 31, 16, 0),
        )
        # Jan 31st 23:00 in Tokyo
        _add(
            session,
            user.id,
            TransactionType.expense,
            "3",
            "Food",
            datetime(2024, 1, 31, 14, 0),
        )

        period = resolve_period("month", now=datetime(2024, 2, 1, 3, 0), tz=tokyo)
        totals = MetricsService(session, user.id).totals(period)

        assert totals.count == 1
        assert totals.expense_cents == 700
