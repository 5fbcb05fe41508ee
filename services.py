from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload

from config import get_settings
from errors import Conflict, NotFound, Unavailable, ValidationFailed
from models import Category, Investment, Transaction, TransactionType
from periods import Period, add_months, resolve_period
from schemas import (
    CategoryIn,
    CategoryUpdate,
    InvestmentIn,
    InvestmentUpdate,
    TransactionIn,
    TransactionUpdate,
)
from tokens import Clock, system_clock

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
MAX_PAGE_SIZE = 100
RECENT_LIMIT = 10

DEFAULT_CATEGORIES: tuple[tuple[str, TransactionType, str, str], ...] = (
    ("Salary", TransactionType.income, "#10B981", "banknotes"),
    ("Freelance", TransactionType.income, "#059669", "briefcase"),
    ("Investments", TransactionType.income, "#047857", "chart-bar"),
    ("Other Income", TransactionType.income, "#065F46", "plus-circle"),
    ("Food & Dining", TransactionType.expense, "#EF4444", "cake"),
    ("Transportation", TransactionType.expense, "#F97316", "truck"),
    ("Shopping", TransactionType.expense, "#EAB308", "shopping-bag"),
    ("Entertainment", TransactionType.expense, "#8B5CF6", "film"),
    ("Bills & Utilities", TransactionType.expense, "#06B6D4", "bolt"),
    ("Healthcare", TransactionType.expense, "#EC4899", "heart"),
    ("Education", TransactionType.expense, "#3B82F6", "academic-cap"),
    ("Other Expenses", TransactionType.expense, "#6B7280", "ellipsis-horizontal"),
)


def to_amount(value: object) -> Decimal:
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def local_today(now: datetime, tz_name: Optional[str] = None) -> date:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(tz_name or get_settings().timezone)).date()


def month_key(column, dialect: str):
    """``YYYY-MM`` of a date column for the given SQL dialect."""
    if dialect == "postgresql":
        return func.to_char(column, "YYYY-MM")
    if dialect in ("mysql", "mariadb"):
        return func.date_format(column, "%Y-%m")
    if dialect == "sqlite":
        return func.strftime("%Y-%m", column)
    raise Unavailable(f"Monthly trends are not supported on {dialect}")


def seed_default_categories(session: Session, user_id: str) -> list[Category]:
    categories = [
        Category(
            user_id=user_id,
            name=name,
            type=txn_type,
            color=color,
            icon=icon,
            is_default=True,
        )
        for name, txn_type, color, icon in DEFAULT_CATEGORIES
    ]
    session.add_all(categories)
    session.flush()
    logger.info(f"categories_seeded: user_id={user_id} count={len(categories)}")
    return categories


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    search: Optional[str] = None


@dataclass
class Page:
    items: list[Transaction]
    page: int
    page_size: int
    total_items: int
    total_pages: int = field(init=False)

    def __post_init__(self) -> None:
        self.total_pages = math.ceil(self.total_items / self.page_size)


class CategoryService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self, type: Optional[TransactionType] = None) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.name)
        )
        if type:
            stmt = stmt.where(Category.type == type)
        return self.session.scalars(stmt).all()

    def get(self, category_id: str) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFound("Category not found")
        return category

    def _ensure_unique(
        self, name: str, type: TransactionType, exclude_id: Optional[str] = None
    ) -> None:
        stmt = select(Category.id).where(
            Category.user_id == self.user_id,
            Category.type == type,
            func.lower(Category.name) == name.lower(),
        )
        if exclude_id:
            stmt = stmt.where(Category.id != exclude_id)
        if self.session.scalar(stmt):
            raise Conflict("Category with this name already exists")

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        if not name:
            raise ValidationFailed("Category name cannot be empty")
        self._ensure_unique(name, data.type)
        category = Category(
            user_id=self.user_id,
            name=name,
            type=data.type,
            color=data.color,
            icon=data.icon.strip(),
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        logger.info(f"category_created: user_id={self.user_id} id={category.id}")
        return category

    def update(self, category_id: str, data: CategoryUpdate) -> Category:
        category = self.get(category_id)
        changes = data.model_dump(exclude_unset=True)

        if "name" in changes:
            name = (changes["name"] or "").strip()
            if not name:
                raise ValidationFailed("Category name cannot be empty")
            self._ensure_unique(name, category.type, exclude_id=category.id)
            category.name = name
        if "color" in changes:
            if changes["color"] is None:
                raise ValidationFailed("Color cannot be empty")
            category.color = changes["color"]
        if "icon" in changes:
            icon = (changes["icon"] or "").strip()
            if not icon:
                raise ValidationFailed("Icon cannot be empty")
            category.icon = icon

        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: str) -> None:
        category = self.get(category_id)
        in_use = int(
            self.session.execute(
                select(func.count(Transaction.id)).where(
                    Transaction.category_id == category.id
                )
            ).scalar_one()
            or 0
        )
        if in_use:
            raise Conflict("Cannot delete category with existing transactions")
        self.session.delete(category)
        self.session.commit()
        logger.info(f"category_deleted: user_id={self.user_id} id={category_id}")


class TransactionService:
    UPDATABLE_FIELDS = ("amount", "description", "type", "category_id", "date", "notes")
    REQUIRED_FIELDS = ("amount", "description", "type", "category_id", "date")

    def __init__(
        self, session: Session, user_id: str, *, clock: Optional[Clock] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.clock = clock or system_clock

    def _category_for(self, category_id: str, txn_type: TransactionType) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFound("Category not found")
        if category.type != txn_type:
            raise ValidationFailed("Category type mismatch")
        return category

    def has_any(self) -> bool:
        stmt = select(func.count(Transaction.id)).where(
            Transaction.user_id == self.user_id
        )
        return (self.session.execute(stmt).scalar_one() or 0) > 0

    def create(self, data: TransactionIn) -> Transaction:
        if data.amount <= 0:
            raise ValidationFailed("Amount must be greater than zero")
        self._category_for(data.category_id, data.type)
        txn = Transaction(
            user_id=self.user_id,
            amount=to_amount(data.amount),
            description=data.description.strip(),
            type=data.type,
            category_id=data.category_id,
            date=data.date or local_today(self.clock()),
            notes=data.notes,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(f"transaction_created: user_id={self.user_id} id={txn.id}")
        return txn

    def get(self, transaction_id: str) -> Transaction:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    def update(self, transaction_id: str, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        changes = data.model_dump(exclude_unset=True)
        for name in self.REQUIRED_FIELDS:
            if name in changes and changes[name] is None:
                raise ValidationFailed(f"{name} cannot be null")

        new_type = changes.get("type", txn.type)
        new_category_id = changes.get("category_id", txn.category_id)
        if "type" in changes or "category_id" in changes:
            self._category_for(new_category_id, new_type)

        for name in self.UPDATABLE_FIELDS:
            if name not in changes:
                continue
            value = changes[name]
            if name == "amount":
                value = to_amount(value)
            elif name == "description":
                value = value.strip()
            setattr(txn, name, value)

        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: str) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()
        logger.info(f"transaction_deleted: user_id={self.user_id} id={transaction_id}")

    def _filtered(self, stmt, filters: TransactionFilters):
        stmt = stmt.where(Transaction.user_id == self.user_id)
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.category_id:
            stmt = stmt.where(Transaction.category_id == filters.category_id)
        if filters.start_date:
            stmt = stmt.where(Transaction.date >= filters.start_date)
        if filters.end_date:
            stmt = stmt.where(Transaction.date <= filters.end_date)
        if filters.search:
            like = f"%{filters.search.lower()}%"
            stmt = stmt.where(func.lower(Transaction.description).like(like))
        return stmt

    def list(
        self,
        filters: Optional[TransactionFilters] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Page:
        filters = filters or TransactionFilters()
        if page < 1:
            raise ValidationFailed("Page must be at least 1")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationFailed(f"Page size must be between 1 and {MAX_PAGE_SIZE}")
        if (
            filters.start_date
            and filters.end_date
            and filters.start_date > filters.end_date
        ):
            raise ValidationFailed("Start date must be before end date")

        total = int(
            self.session.execute(
                self._filtered(select(func.count(Transaction.id)), filters)
            ).scalar_one()
            or 0
        )
        stmt = (
            self._filtered(
                select(Transaction).options(joinedload(Transaction.category)), filters
            )
            .order_by(
                Transaction.date.desc(),
                Transaction.created_at.desc(),
                Transaction.id.desc(),
            )
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        items = self.session.scalars(stmt).all()
        return Page(items=list(items), page=page, page_size=page_size, total_items=total)

    def recent(self, limit: int = RECENT_LIMIT) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.user_id == self.user_id)
            .order_by(
                Transaction.date.desc(),
                Transaction.created_at.desc(),
                Transaction.id.desc(),
            )
            .limit(limit)
        )
        return self.session.scalars(stmt).all()


class ReportService:
    """Read-only aggregates over a single user's transactions."""

    def __init__(
        self,
        session: Session,
        user_id: str,
        *,
        clock: Optional[Clock] = None,
        tz_name: Optional[str] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.clock = clock or system_clock
        self.tz_name = tz_name
        self.txn_service = TransactionService(session, user_id, clock=self.clock)

    def _in_period(self, stmt, period: Period):
        if period.start is not None:
            stmt = stmt.where(Transaction.date >= period.start)
        if period.end is not None:
            stmt = stmt.where(Transaction.date <= period.end)
        return stmt

    def summary(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        period: Optional[str] = None,
    ) -> dict[str, object]:
        # Resolved once so every query below sees the same range.
        today = local_today(self.clock(), self.tz_name)
        resolved = resolve_period(period, start_date, end_date, today=today)

        totals_stmt = self._in_period(
            select(
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount), 0).label("total"),
            )
            .where(Transaction.user_id == self.user_id)
            .group_by(Transaction.type),
            resolved,
        )
        totals = {
            row.type: to_amount(row.total)
            for row in self.session.execute(totals_stmt)
        }
        income = totals.get(TransactionType.income, to_amount(0))
        expenses = totals.get(TransactionType.expense, to_amount(0))

        total_col = func.sum(Transaction.amount).label("total")
        breakdown_stmt = self._in_period(
            select(
                Transaction.type,
                Category.id.label("category_id"),
                Category.name,
                Category.color,
                Category.icon,
                total_col,
            )
            .join(Category, Category.id == Transaction.category_id)
            .where(Transaction.user_id == self.user_id)
            .group_by(
                Transaction.type,
                Category.id,
                Category.name,
                Category.color,
                Category.icon,
            )
            .order_by(Transaction.type, total_col.desc(), Category.name),
            resolved,
        )
        breakdown = [
            {
                "type": row.type,
                "category_id": row.category_id,
                "name": row.name,
                "color": row.color,
                "icon": row.icon,
                "total": to_amount(row.total),
            }
            for row in self.session.execute(breakdown_stmt)
        ]

        return {
            "total_income": income,
            "total_expenses": expenses,
            "net_income": income - expenses,
            "period": resolved,
            "category_breakdown": breakdown,
            "recent_transactions": self.txn_service.recent(RECENT_LIMIT),
        }

    def trends(self, months: int = 6) -> list[dict[str, object]]:
        if not 1 <= months <= 12:
            raise ValidationFailed("Months must be between 1 and 12")
        today = local_today(self.clock(), self.tz_name)
        start = add_months(today, -months)

        dialect = self.session.get_bind().dialect.name
        month = month_key(Transaction.date, dialect).label("month")
        stmt = (
            select(
                month,
                Transaction.type,
                func.sum(Transaction.amount).label("total"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(start, today),
            )
            .group_by(month, Transaction.type)
            .order_by(month.asc(), Transaction.type)
        )
        return [
            {"month": row.month, "type": row.type, "total": to_amount(row.total)}
            for row in self.session.execute(stmt)
        ]


class InvestmentService:
    UPDATABLE_FIELDS = ("name", "type", "amount", "current_value", "purchase_date", "notes")
    REQUIRED_FIELDS = ("name", "type", "amount", "purchase_date")

    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Investment]:
        stmt = (
            select(Investment)
            .where(Investment.user_id == self.user_id)
            .order_by(Investment.purchase_date.desc(), Investment.name)
        )
        return self.session.scalars(stmt).all()

    def get(self, investment_id: str) -> Investment:
        investment = self.session.get(Investment, investment_id)
        if not investment or investment.user_id != self.user_id:
            raise NotFound("Investment not found")
        return investment

    def create(self, data: InvestmentIn) -> Investment:
        investment = Investment(
            user_id=self.user_id,
            name=data.name.strip(),
            type=data.type,
            amount=to_amount(data.amount),
            current_value=(
                to_amount(data.current_value)
                if data.current_value is not None
                else None
            ),
            purchase_date=data.purchase_date,
            notes=data.notes,
        )
        self.session.add(investment)
        self.session.commit()
        self.session.refresh(investment)
        return investment

    def update(self, investment_id: str, data: InvestmentUpdate) -> Investment:
        investment = self.get(investment_id)
        changes = data.model_dump(exclude_unset=True)
        for name in self.REQUIRED_FIELDS:
            if name in changes and changes[name] is None:
                raise ValidationFailed(f"{name} cannot be null")
        for name in self.UPDATABLE_FIELDS:
            if name not in changes:
                continue
            value = changes[name]
            if name in ("amount", "current_value") and value is not None:
                value = to_amount(value)
            elif name == "name":
                value = value.strip()
            setattr(investment, name, value)
        self.session.commit()
        self.session.refresh(investment)
        return investment

    def delete(self, investment_id: str) -> None:
        investment = self.get(investment_id)
        self.session.delete(investment)
        self.session.commit()

    def overview(self) -> dict[str, object]:
        row = self.session.execute(
            select(
                func.coalesce(func.sum(Investment.amount), 0).label("invested"),
                func.coalesce(
                    func.sum(func.coalesce(Investment.current_value, Investment.amount)),
                    0,
                ).label("current"),
                func.count(Investment.id).label("count"),
            ).where(Investment.user_id == self.user_id)
        ).one()
        invested = to_amount(row.invested)
        current = to_amount(row.current)
        gain = current - invested
        roi = (gain / invested * 100).quantize(CENT) if invested else to_amount(0)
        return {
            "count": int(row.count or 0),
            "total_invested": invested,
            "current_value": current,
            "gain": gain,
            "roi_percent": roi,
        }
