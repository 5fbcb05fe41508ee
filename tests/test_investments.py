from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from database import Base
from errors import NotFound, ValidationFailed
from models import InvestmentType, User
from schemas import InvestmentIn, InvestmentUpdate
from services import InvestmentService


def make_session() -> Session:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_user(session: Session, email: str = "owner@example.com") -> User:
    user = User(
        email=email, password_hash="x", first_name="Test", last_name="Owner"
    )
    session.add(user)
    session.commit()
    return user


def test_overview_uses_cost_basis_when_value_unknown() -> None:
    session = make_session()
    user = make_user(session)
    service = InvestmentService(session, user.id)
    service.create(
        InvestmentIn(
            name="Index fund",
            type=InvestmentType.etf,
            amount=Decimal("1000.00"),
            current_value=Decimal("1250.00"),
            purchase_date=date(2023, 6, 1),
        )
    )
    service.create(
        InvestmentIn(
            name="Savings bond",
            type=InvestmentType.bonds,
            amount=Decimal("500.00"),
            purchase_date=date(2024, 1, 15),
        )
    )

    overview = service.overview()

    assert overview["count"] == 2
    assert overview["total_invested"] == Decimal("1500.00")
    assert overview["current_value"] == Decimal("1750.00")
    assert overview["gain"] == Decimal("250.00")
    assert overview["roi_percent"] == Decimal("16.67")
    assert [i.name for i in service.list_all()] == ["Savings bond", "Index fund"]


def test_empty_overview() -> None:
    session = make_session()
    user = make_user(session)

    overview = InvestmentService(session, user.id).overview()

    assert overview["count"] == 0
    assert overview["total_invested"] == Decimal("0.00")
    assert overview["roi_percent"] == Decimal("0.00")


def test_update_and_delete_are_owner_scoped() -> None:
    session = make_session()
    owner = make_user(session, "owner@example.com")
    other = make_user(session, "other@example.com")
    service = InvestmentService(session, owner.id)
    holding = service.create(
        InvestmentIn(
            name="Bitcoin",
            type=InvestmentType.crypto,
            amount=Decimal("200.00"),
            purchase_date=date(2024, 2, 1),
        )
    )

    updated = service.update(
        holding.id, InvestmentUpdate(current_value=Decimal("340.00"))
    )
    assert updated.current_value == Decimal("340.00")
    assert updated.amount == Decimal("200.00")

    with pytest.raises(ValidationFailed):
        service.update(holding.id, InvestmentUpdate(name=None))
    with pytest.raises(NotFound):
        InvestmentService(session, other.id).update(
            holding.id, InvestmentUpdate(notes="mine")
        )
    with pytest.raises(NotFound):
        InvestmentService(session, other.id).delete(holding.id)

    service.delete(holding.id)
    assert service.list_all() == []
