from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Protocol

from sqlalchemy import case, delete, extract, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from models import Transaction, TransactionTag, TransactionType, User
from passwords import (
    generate_reset_token,
    hash_password,
    hash_reset_token,
    verify_password,
)
from periods import Period, one_year_before
from schemas import (
    ChangePasswordIn,
    LoginIn,
    ProfileUpdateIn,
    RegisterIn,
    ResetPasswordIn,
    TransactionIn,
    TransactionQuery,
    TransactionUpdate,
)
from tokens import REFRESH, TokenPair, issue_token_pair, verify_token

logger = logging.getLogger(__name__)

RESET_TOKEN_TTL = timedelta(minutes=10)
FORGOT_PASSWORD_MESSAGE = (
    "If an account with that email exists, a password reset link has been sent"
)
CATEGORY_STATS_LIMIT = 10

SORT_COLUMNS = {
    "date": Transaction.date,
    "amount": Transaction.amount_cents,
    "category": Transaction.category,
    "type": Transaction.type,
    "description": Transaction.description,
    "createdAt": Transaction.created_at,
}


def amount_to_cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _like_pattern(text: str) -> str:
    escaped = text.lower().replace("\\", "\\\\")
    escaped = escaped.replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class PasswordResetNotifier(Protocol):
    def send_reset_token(self, user: User, raw_token: str) -> None: ...


class LoggingResetNotifier:
    """Default notifier: records the request, never the token itself."""

    def send_reset_token(self, user: User, raw_token: str) -> None:
        logger.warning(f"password_reset_requested: user_id={user.id}")


class AuthService:
    def __init__(
        self, session: Session, notifier: Optional[PasswordResetNotifier] = None
    ) -> None:
        self.session = session
        self.notifier = notifier or LoggingResetNotifier()

    def _find_by_email(self, email: str) -> Optional[User]:
        stmt = select(User).where(User.email == normalize_email(email))
        return self.session.scalar(stmt)

    def _get_user(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def register(self, data: RegisterIn) -> tuple[User, TokenPair]:
        email = normalize_email(data.email)
        if self._find_by_email(email):
            raise ConflictError("Email already registered.")

        user = User(
            name=data.name,
            email=email,
            password_hash=hash_password(data.password),
            is_active=True,
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError("Email already registered.") from exc
        self.session.refresh(user)
        return user, issue_token_pair(user.id)

    def login(self, data: LoginIn) -> tuple[User, TokenPair]:
        user = self._find_by_email(data.email)
        if not user or not user.is_active:
            raise UnauthorizedError("Invalid email or password.")
        if not verify_password(data.password, user.password_hash):
            raise UnauthorizedError("Invalid email or password.")

        user.last_login = datetime.utcnow()
        self.session.commit()
        return user, issue_token_pair(user.id)

    def refresh(self, refresh_token: Optional[str]) -> TokenPair:
        if not refresh_token:
            raise ValidationError("Refresh token is required")
        user_id = verify_token(refresh_token, REFRESH)
        user = self.session.get(User, user_id)
        if not user or not user.is_active:
            raise UnauthorizedError("User not found or inactive")
        return issue_token_pair(user.id)

    def get_profile(self, user_id: int) -> User:
        return self._get_user(user_id)

    def update_profile(self, user_id: int, data: ProfileUpdateIn) -> User:
        user = self._get_user(user_id)
        if data.email:
            email = normalize_email(data.email)
            taken = self.session.scalar(
                select(User.id).where(User.email == email, User.id != user_id)
            )
            if taken:
                raise ConflictError("Email already in use by another account")
            user.email = email
        if data.name:
            user.name = data.name
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError("Email already in use by another account") from exc
        self.session.refresh(user)
        return user

    def change_password(self, user_id: int, data: ChangePasswordIn) -> None:
        user = self._get_user(user_id)
        if not verify_password(data.current_password, user.password_hash):
            raise ValidationError("Current password is incorrect")
        user.password_hash = hash_password(data.new_password)
        self.session.commit()

    def forgot_password(self, email: str, now: Optional[datetime] = None) -> str:
        """Start a reset; the returned message never reveals whether
        ``email`` belongs to an account."""
        user = self._find_by_email(email)
        if not user or not user.is_active:
            return FORGOT_PASSWORD_MESSAGE

        raw_token, token_hash = generate_reset_token()
        user.password_reset_token = token_hash
        user.password_reset_expires = (now or datetime.utcnow()) + RESET_TOKEN_TTL
        self.session.commit()
        self.notifier.send_reset_token(user, raw_token)
        return FORGOT_PASSWORD_MESSAGE

    def reset_password(
        self, data: ResetPasswordIn, now: Optional[datetime] = None
    ) -> User:
        now = now or datetime.utcnow()
        stmt = select(User).where(
            User.password_reset_token == hash_reset_token(data.token),
            User.password_reset_expires > now,
        )
        user = self.session.scalar(stmt)
        if not user:
            raise ValidationError("Invalid or expired reset token")

        user.password_hash = hash_password(data.new_password)
        user.password_reset_token = None
        user.password_reset_expires = None
        self.session.commit()
        return user


@dataclass
class TransactionPage:
    items: list[Transaction]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1


@dataclass
class CategoryUsage:
    category: str
    count: int
    total_cents: int
    avg_cents: float


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def create(self, data: TransactionIn) -> Transaction:
        amount_cents = amount_to_cents(data.amount)
        if amount_cents <= 0:
            raise ValidationError("Amount must be greater than 0")

        txn = Transaction(
            user_id=self.user_id,
            type=data.type,
            amount_cents=amount_cents,
            category=data.category,
            description=data.description,
            date=data.date or datetime.utcnow(),
            is_recurring=data.is_recurring,
            recurring_interval=data.recurring_interval,
            attachments=[a.model_dump() for a in data.attachments],
        )
        txn.tags.extend(data.tags)
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: user_id={self.user_id} id={txn.id} "
            f"type={txn.type.value} amount_cents={txn.amount_cents}"
        )
        return txn

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(selectinload(Transaction.tag_rows))
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        changes = data.model_dump(exclude_unset=True)
        if "amount" in changes:
            amount_cents = amount_to_cents(data.amount)
            if amount_cents <= 0:
                raise ValidationError("Amount must be greater than 0")
        txn = self.get(transaction_id)

        if "type" in changes:
            txn.type = data.type
        if "amount" in changes:
            txn.amount_cents = amount_cents
        if "category" in changes:
            txn.category = data.category
        if "description" in changes:
            txn.description = data.description
        if "date" in changes:
            txn.date = data.date
        if "is_recurring" in changes:
            txn.is_recurring = data.is_recurring
        if "recurring_interval" in changes:
            txn.recurring_interval = data.recurring_interval
        if "attachments" in changes:
            txn.attachments = [a.model_dump() for a in data.attachments]
        if "tags" in changes:
            txn.tag_rows.clear()
            txn.tags.extend(data.tags)

        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()

    def bulk_delete(self, transaction_ids: object) -> int:
        if not isinstance(transaction_ids, list) or not transaction_ids:
            raise ValidationError("Transaction IDs array is required")

        owned_ids = self.session.scalars(
            select(Transaction.id).where(
                Transaction.user_id == self.user_id,
                Transaction.id.in_(transaction_ids),
            )
        ).all()
        if not owned_ids:
            return 0

        self.session.execute(
            delete(TransactionTag).where(TransactionTag.transaction_id.in_(owned_ids))
        )
        result = self.session.execute(
            delete(Transaction).where(
                Transaction.user_id == self.user_id, Transaction.id.in_(owned_ids)
            )
        )
        self.session.commit()
        logger.info(
            f"transactions_bulk_deleted: user_id={self.user_id} "
            f"requested={len(transaction_ids)} deleted={result.rowcount}"
        )
        return result.rowcount

    def _filter_conditions(self, query: TransactionQuery) -> list:
        conditions = [Transaction.user_id == self.user_id]
        if query.type:
            conditions.append(Transaction.type == query.type)
        if query.category:
            conditions.append(
                func.lower(Transaction.category).like(
                    _like_pattern(query.category), escape="\\"
                )
            )
        if query.start_date:
            conditions.append(Transaction.date >= query.start_date)
        if query.end_date:
            conditions.append(Transaction.date <= query.end_date)
        if query.min_amount is not None:
            conditions.append(
                Transaction.amount_cents >= amount_to_cents(query.min_amount)
            )
        if query.max_amount is not None:
            conditions.append(
                Transaction.amount_cents <= amount_to_cents(query.max_amount)
            )
        if query.search:
            like = _like_pattern(query.search)
            conditions.append(
                or_(
                    func.lower(func.coalesce(Transaction.description, "")).like(
                        like, escape="\\"
                    ),
                    func.lower(Transaction.category).like(like, escape="\\"),
                    Transaction.tag_rows.any(
                        func.lower(TransactionTag.name).like(like, escape="\\")
                    ),
                )
            )
        return conditions

    def list(self, query: TransactionQuery) -> TransactionPage:
        conditions = self._filter_conditions(query)

        total = self.session.execute(
            select(func.count(Transaction.id)).where(*conditions)
        ).scalar_one()

        column = SORT_COLUMNS[query.sort_by]
        if query.sort_order == "desc":
            order = (column.desc(), Transaction.id.desc())
        else:
            order = (column.asc(), Transaction.id.asc())
        stmt = (
            select(Transaction)
            .options(selectinload(Transaction.tag_rows))
            .where(*conditions)
            .order_by(*order)
            .offset((query.page - 1) * query.limit)
            .limit(query.limit)
        )
        items = list(self.session.scalars(stmt).all())
        return TransactionPage(
            items=items, total=int(total or 0), page=query.page, limit=query.limit
        )

    def categories(self) -> list[CategoryUsage]:
        amount = Transaction.amount_cents
        stmt = (
            select(
                Transaction.category,
                func.count(Transaction.id).label("count"),
                func.sum(amount).label("total"),
                func.avg(amount).label("avg"),
            )
            .where(Transaction.user_id == self.user_id)
            .group_by(Transaction.category)
            .order_by(func.count(Transaction.id).desc(), Transaction.category)
        )
        return [
            CategoryUsage(
                category=row.category,
                count=int(row.count),
                total_cents=int(row.total or 0),
                avg_cents=float(row.avg or 0),
            )
            for row in self.session.execute(stmt).all()
        ]


@dataclass
class StatsTotals:
    income_cents: int = 0
    expense_cents: int = 0
    count: int = 0
    avg_cents: float = 0
    min_cents: int = 0
    max_cents: int = 0

    @property
    def net_cents(self) -> int:
        return self.income_cents - self.expense_cents


@dataclass
class CategoryStat:
    category: str
    total_cents: int
    count: int
    avg_cents: float


@dataclass
class MonthlyStat:
    year: int
    month: int
    income_cents: int
    expense_cents: int


@dataclass
class TransactionStats:
    period: str
    totals: StatsTotals
    categories: list[CategoryStat] = field(default_factory=list)
    monthly: list[MonthlyStat] = field(default_factory=list)


class MetricsService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    @staticmethod
    def _sum_of(txn_type: TransactionType):
        return func.coalesce(
            func.sum(
                case(
                    (Transaction.type == txn_type, Transaction.amount_cents),
                    else_=0,
                )
            ),
            0,
        )

    def _window_conditions(self, period: Period) -> list:
        conditions = [Transaction.user_id == self.user_id]
        if period.start is not None:
            conditions.append(Transaction.date >= period.start)
        return conditions

    def totals(self, period: Period) -> StatsTotals:
        amount = Transaction.amount_cents
        stmt = select(
            self._sum_of(TransactionType.income).label("income"),
            self._sum_of(TransactionType.expense).label("expense"),
            func.count(Transaction.id).label("count"),
            func.avg(amount).label("avg"),
            func.min(amount).label("min"),
            func.max(amount).label("max"),
        ).where(*self._window_conditions(period))
        row = self.session.execute(stmt).one()
        if not row.count:
            return StatsTotals()
        return StatsTotals(
            income_cents=int(row.income),
            expense_cents=int(row.expense),
            count=int(row.count),
            avg_cents=float(row.avg),
            min_cents=int(row.min),
            max_cents=int(row.max),
        )

    def category_breakdown(
        self, period: Period, limit: int = CATEGORY_STATS_LIMIT
    ) -> list[CategoryStat]:
        amount = Transaction.amount_cents
        total = func.sum(amount)
        stmt = (
            select(
                Transaction.category,
                total.label("total"),
                func.count(Transaction.id).label("count"),
                func.avg(amount).label("avg"),
            )
            .where(*self._window_conditions(period))
            .group_by(Transaction.category)
            .order_by(total.desc(), Transaction.category)
            .limit(limit)
        )
        return [
            CategoryStat(
                category=row.category,
                total_cents=int(row.total or 0),
                count=int(row.count),
                avg_cents=float(row.avg or 0),
            )
            for row in self.session.execute(stmt).all()
        ]

    def monthly_series(self, now: Optional[datetime] = None) -> list[MonthlyStat]:
        """Income and expenses per UTC calendar month over the trailing year."""
        now = now or datetime.utcnow()
        year = extract("year", Transaction.date)
        month = extract("month", Transaction.date)
        stmt = (
            select(
                year.label("year"),
                month.label("month"),
                self._sum_of(TransactionType.income).label("income"),
                self._sum_of(TransactionType.expense).label("expense"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date >= one_year_before(now),
            )
            .group_by(year, month)
            .order_by(year, month)
        )
        return [
            MonthlyStat(
                year=int(row.year),
                month=int(row.month),
                income_cents=int(row.income),
                expense_cents=int(row.expense),
            )
            for row in self.session.execute(stmt).all()
        ]

    def stats(
        self, period: Period, *, now: Optional[datetime] = None
    ) -> TransactionStats:
        return TransactionStats(
            period=period.slug,
            totals=self.totals(period),
            categories=self.category_breakdown(period),
            monthly=self.monthly_series(now),
        )
