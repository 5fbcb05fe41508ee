"""Demo data generator.

Fills an existing account with random transactions so dashboards and charts
have something to show. This is placeholder data for demos only; nothing in
the reporting code depends on it.
"""

import argparse
import logging
import random
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from database import session_scope
from errors import NotFound
from models import Category, TransactionType, User
from schemas import TransactionIn
from services import TransactionService, local_today
from tokens import system_clock

logger = logging.getLogger(__name__)

AMOUNT_RANGES = {
    TransactionType.income: (Decimal("500"), Decimal("5000")),
    TransactionType.expense: (Decimal("5"), Decimal("400")),
}


def _random_amount(rng: random.Random, txn_type: TransactionType) -> Decimal:
    low, high = AMOUNT_RANGES[txn_type]
    cents = rng.randint(int(low * 100), int(high * 100))
    return Decimal(cents) / 100


def generate_demo_transactions(
    session: Session,
    user_id: str,
    *,
    count: int = 60,
    days: int = 180,
    seed: Optional[int] = None,
    today: Optional[date] = None,
) -> int:
    categories = session.scalars(
        select(Category)
        .where(Category.user_id == user_id)
        .order_by(Category.type, Category.name)
    ).all()
    if not categories:
        raise NotFound("User has no categories to attach demo transactions to")

    rng = random.Random(seed)
    today = today or date.today()
    service = TransactionService(session, user_id)
    for _ in range(count):
        # Roughly one income entry for every four expenses.
        txn_type = (
            TransactionType.income if rng.random() < 0.2 else TransactionType.expense
        )
        pool = [c for c in categories if c.type == txn_type] or categories
        category = rng.choice(pool)
        service.create(
            TransactionIn(
                amount=_random_amount(rng, category.type),
                description=f"Demo {category.name.lower()}",
                type=category.type,
                category_id=category.id,
                date=today - timedelta(days=rng.randint(0, days)),
                notes="demo data",
            )
        )
    logger.info(f"demo_data_generated: user_id={user_id} count={count}")
    return count


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("email", help="email of an existing user")
    parser.add_argument("--count", type=int, default=60)
    parser.add_argument("--days", type=int, default=180)
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    with session_scope() as session:
        user = session.scalar(
            select(User).where(User.email == args.email.strip().lower())
        )
        if not user:
            raise SystemExit(f"No user with email {args.email}")
        generate_demo_transactions(
            session,
            user.id,
            count=args.count,
            days=args.days,
            seed=args.seed,
            today=local_today(system_clock()),
        )


if __name__ == "__main__":
    main()
