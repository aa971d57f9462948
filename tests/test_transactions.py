from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from database import Base
from errors import NotFoundError, ValidationError
from models import Transaction, TransactionTag, TransactionType, User
from schemas import TransactionIn, TransactionQuery, TransactionUpdate
from services import TransactionService, amount_to_cents


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _user(session: Session, email: str) -> User:
    user = User(name=email.split("@")[0], email=email, password_hash="x")
    session.add(user)
    session.commit()
    return user


def _expense(amount: str, category: str = "Food", **kwargs) -> TransactionIn:
    return TransactionIn(
        type=TransactionType.expense,
        amount=Decimal(amount),
        category=category,
        **kwargs,
    )


def test_amount_to_cents_rounds_half_up() -> None:
    assert amount_to_cents(Decimal("42.50")) == 4250
    assert amount_to_cents(Decimal("0.015")) == 2
    assert amount_to_cents(Decimal("10")) == 1000


def test_create_stores_cents_tags_and_defaults() -> None:
    with _session() as session:
        user = _user(session, "ada@example.com")
        txn = TransactionService(session, user.id).create(
            _expense("42.50", "Food & Dining", tags=[" lunch ", "", "work"])
        )

        assert txn.amount_cents == 4250
        assert list(txn.tags) == ["lunch", "work"]
        assert txn.is_recurring is False
        assert txn.recurring_interval.value == "monthly"
        assert txn.date is not None


def test_transaction_input_validation() -> None:
    with pytest.raises(ValueError):
        _expense("0")
    with pytest.raises(ValueError):
        _expense("5", tags=["x" * 21])
    with pytest.raises(ValueError):
        _expense("5", description="d" * 201)
    with pytest.raises(ValueError):
        TransactionIn.model_validate(
            {"type": "transfer", "amount": "5", "category": "Food"}
        )

    txn = TransactionIn.model_validate(
        {"type": "income", "amount": 10, "category": "Pay", "date": "2024-01-15"}
    )
    assert txn.date == datetime(2024, 1, 15)


def test_other_users_transactions_are_not_found() -> None:
    with _session() as session:
        owner = _user(session, "ada@example.com")
        other = _user(session, "grace@example.com")
        txn = TransactionService(session, owner.id).create(_expense("12"))
        intruder = TransactionService(session, other.id)

        with pytest.raises(NotFoundError):
            intruder.get(txn.id)
        with pytest.raises(NotFoundError):
            intruder.update(txn.id, TransactionUpdate(category="Hacked"))
        with pytest.raises(NotFoundError):
            intruder.delete(txn.id)

        assert TransactionService(session, owner.id).get(txn.id).category == "Food"


def test_partial_update_only_touches_sent_fields() -> None:
    with _session() as session:
        user = _user(session, "ada@example.com")
        service = TransactionService(session, user.id)
        txn = service.create(
            _expense("20", description="Groceries", tags=["weekly", "market"])
        )

        updated = service.update(
            txn.id,
            TransactionUpdate.model_validate({"amount": "25.10", "tags": ["bulk"]}),
        )
        assert updated.amount_cents == 2510
        assert updated.description == "Groceries"
        assert list(updated.tags) == ["bulk"]

        cleared = service.update(
            txn.id, TransactionUpdate.model_validate({"description": None})
        )
        assert cleared.description is None
        assert session.scalar(select(func.count(TransactionTag.id))) == 1


def test_update_rejects_null_for_required_field() -> None:
    with pytest.raises(ValueError):
        TransactionUpdate.model_validate({"amount": None})


def test_delete_removes_transaction_and_tags() -> None:
    with _session() as session:
        user = _user(session, "ada@example.com")
        service = TransactionService(session, user.id)
        txn = service.create(_expense("20", tags=["a", "b"]))

        service.delete(txn.id)

        assert session.scalar(select(func.count(Transaction.id))) == 0
        assert session.scalar(select(func.count(TransactionTag.id))) == 0


def test_bulk_delete_counts_only_owned_transactions() -> None:
    with _session() as session:
        owner = _user(session, "ada@example.com")
        other = _user(session, "grace@example.com")
        mine = TransactionService(session, owner.id).create(_expense("5", tags=["t"]))
        theirs = TransactionService(session, other.id).create(_expense("6"))

        deleted = TransactionService(session, owner.id).bulk_delete(
            [mine.id, theirs.id, 9999]
        )

        assert deleted == 1
        remaining = session.scalars(select(Transaction.id)).all()
        assert remaining == [theirs.id]


def test_bulk_delete_requires_non_empty_list() -> None:
    with _session() as session:
        user = _user(session, "ada@example.com")
        service = TransactionService(session, user.id)

        for bad in (None, [], "1,2"):
            with pytest.raises(ValidationError) as exc:
                service.bulk_delete(bad)
            assert exc.value.message == "Transaction IDs array is required"


def test_list_paginates_with_consistent_metadata() -> None:
    with _session() as session:
        user = _user(session, "ada@example.com")
        service = TransactionService(session, user.id)
        for day in range(1, 26):
            service.create(_expense("1", date=datetime(2024, 1, day)))

        page = service.list(TransactionQuery(page=3, limit=10))

        assert page.total == 25
        assert page.total_pages == 3
        assert len(page.items) == 5
        assert page.has_prev is True
        assert page.has_next is False
        # newest first by default
        assert page.items[0].date == datetime(2024, 1, 5)

        beyond = service.list(TransactionQuery(page=4, limit=10))
        assert beyond.items == []
        assert beyond.total == 25


def test_list_sorts_ties_deterministically() -> None:
    with _session() as session:
        user = _user(session, "ada@example.com")
        service = TransactionService(session, user.id)
        ids = [service.create(_expense("3")).id for _ in range(4)]

        query = TransactionQuery.model_validate(
            {"sortBy": "amount", "sortOrder": "asc"}
        )
        assert [t.id for t in service.list(query).items] == ids


def test_list_filters_combine() -> None:
    with _session() as session:
        user = _user(session, "ada@example.com")
        service = TransactionService(session, user.id)
        service.create(_expense("10", "Food", date=datetime(2024, 1, 10)))
        service.create(_expense("80", "Food", date=datetime(2024, 1, 31, 18, 30)))
        service.create(_expense("50", "Travel", date=datetime(2024, 1, 20)))
        service.create(
            TransactionIn(
                type=TransactionType.income,
                amount=Decimal("900"),
                category="Salary",
                date=datetime(2024, 1, 25),
            )
        )

        query = TransactionQuery.model_validate(
            {
                "type": "expense",
                "startDate": "2024-01-15",
                "endDate": "2024-01-31",
                "minAmount": "20",
            }
        )
        page = service.list(query)

        assert sorted(t.amount_cents for t in page.items) == [5000, 8000]

        food = service.list(TransactionQuery.model_validate({"category": "foo"}))
        assert {t.category for t in food.items} == {"Food"}


def test_search_matches_description_category_and_tags() -> None:
    with _session() as session:
        user = _user(session, "ada@example.com")
        service = TransactionService(session, user.id)
        service.create(_expense("1", "Food", description="Coffee beans"))
        service.create(_expense("2", "Coffee shops"))
        service.create(_expense("3", "Misc", tags=["coffee"]))
        service.create(_expense("4", "Rent"))

        page = service.list(TransactionQuery(search="COFFEE"))

        assert page.total == 3


def test_search_treats_wildcards_literally() -> None:
    with _session() as session:
        user = _user(session, "ada@example.com")
        service = TransactionService(session, user.id)
        service.create(_expense("1", description="100% refund"))
        service.create(_expense("2", description="1000 refund"))

        page = service.list(TransactionQuery(search="0%"))

        assert [t.description for t in page.items] == ["100% refund"]


def test_categories_reports_usage_per_category() -> None:
    with _session() as session:
        user = _user(session, "ada@example.com")
        service = TransactionService(session, user.id)
        service.create(_expense("10", "Food"))
        service.create(_expense("20", "Food"))
        service.create(_expense("5", "Travel"))

        rows = service.categories()

        assert [(r.category, r.count, r.total_cents) for r in rows] == [
            ("Food", 2, 3000),
            ("Travel", 1, 500),
        ]
        assert rows[0].avg_cents == 1500


def test_offset_timestamps_are_normalized_to_utc() -> None:
    txn = TransactionIn.model_validate(
        {
            "type": "expense",
            "amount": "5",
            "category": "Food",
            "date": "2024-01-31T23:30:00-05:00",
        }
    )
    assert txn.date == datetime(2024, 2, 1, 4, 30)
    assert txn.date.tzinfo is None

    query = TransactionQuery.model_validate(
        {"startDate": "2024-01-15T08:00:00+14:00", "endDate": "2024-01-20"}
    )
    assert query.start_date == datetime(2024, 1, 14, 18, 0)
    assert query.end_date == datetime(2024, 1, 20, 23, 59, 59, 999999)

    with _session() as session:
        user = _user(session, "ada@example.com")
        stored = TransactionService(session, user.id).create(txn)
        session.expire_all()
        assert TransactionService(session, user.id).get(stored.id).date == datetime(
            2024, 2, 1, 4, 30
        )


def test_amount_upper_bound() -> None:
    with pytest.raises(ValueError):
        _expense("1000000000000")
    with pytest.raises(ValueError):
        TransactionQuery.model_validate({"minAmount": "1e20"})

    assert _expense("999999999999.99").amount == Decimal("999999999999.99")


@pytest.mark.parametrize("sort_order", ["asc", "desc"])
def test_walking_every_page_returns_each_transaction_once(sort_order) -> None:
    with _session() as session:
        user = _user(session, "ada@example.com")
        service = TransactionService(session, user.id)
        ids = set()
        for index in range(11):
            # three distinct amounts, so most sort keys tie
            txn = service.create(
                _expense(str(index % 3 + 1), date=datetime(2024, 1, 1 + index % 2))
            )
            ids.add(txn.id)

        for sort_by in ("amount", "date", "category"):
            first = service.list(
                TransactionQuery(limit=4, sort_by=sort_by, sort_order=sort_order)
            )
            assert first.total_pages == 3

            seen = []
            for page in range(1, first.total_pages + 1):
                result = service.list(
                    TransactionQuery(
                        page=page, limit=4, sort_by=sort_by, sort_order=sort_order
                    )
                )
                seen.extend(txn.id for txn in result.items)

            assert len(seen) == len(ids)
            assert set(seen) == ids
