"""Pytest configuration and fixtures."""

import os

# Point the module-level engine at memory before anything imports settings
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from datetime import date, timedelta
from decimal import Decimal
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from stock_ledger.db.base import Base
# Import all models to ensure they're registered with Base.metadata
from stock_ledger.models import *
from stock_ledger.schemas.stock import StockItemCreate
from stock_ledger.services.stock_item_service import StockItemService

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_stock_item(db_session: Session):
    """Factory creating stock items through the registry (opening stock is a ledger row)."""
    service = StockItemService(db_session)

    def _make(name: str, **fields) -> StockItem:
        return service.create_stock_item(StockItemCreate(name=name, **fields), user_id=1)

    return _make


@pytest.fixture
def chicken(make_stock_item) -> StockItem:
    return make_stock_item(
        "Chicken",
        category=StockCategory.MEAT,
        unit=StockUnit.KG,
        quantity=Decimal("10"),
        min_threshold=Decimal("2"),
        cost_per_unit=Decimal("300"),
        deduction_type=DeductionType.AUTOMATIC,
    )


@pytest.fixture
def stock_setup(db_session: Session, make_stock_item):
    """Kitchen with automatic and manual stock items and two tracked menu items."""
    rice = make_stock_item(
        "Rice", category=StockCategory.GRAINS, unit=StockUnit.KG,
        quantity=Decimal("20"), min_threshold=Decimal("5"), cost_per_unit=Decimal("2.50"),
    )
    oil = make_stock_item(
        "Cooking Oil", category=StockCategory.OILS, unit=StockUnit.LITER,
        quantity=Decimal("5"), min_threshold=Decimal("1"), cost_per_unit=Decimal("4"),
    )
    cola = make_stock_item(
        "Cola", category=StockCategory.BEVERAGES, unit=StockUnit.CANS,
        quantity=Decimal("48"), min_threshold=Decimal("12"), cost_per_unit=Decimal("0.80"),
    )
    beef = make_stock_item(
        "Beef", category=StockCategory.MEAT, unit=StockUnit.KG,
        quantity=Decimal("8"), min_threshold=Decimal("2"), cost_per_unit=Decimal("12"),
        deduction_type=DeductionType.MANUAL,
        expiration_date=date.today() + timedelta(days=3),
    )

    # Fried rice = 250 g rice + 20 ml oil (recipe units differ from stock units)
    fried_rice = MenuItem(name="Fried Rice", category="Mains", price=Decimal("9.50"), track_stock=True)
    fried_rice.recipe = [
        RecipeItem(stock_item_id=rice.id, quantity=Decimal("250"), unit="g"),
        RecipeItem(stock_item_id=oil.id, quantity=Decimal("20"), unit="ml"),
    ]
    soda = MenuItem(name="Cola", category="Drinks", price=Decimal("2.00"), track_stock=True)
    soda.recipe = [RecipeItem(stock_item_id=cola.id, quantity=Decimal("1"))]
    # Steak is weighed at serving time, so its recipe item is manual
    steak = MenuItem(name="Steak", category="Mains", price=Decimal("24.00"), track_stock=True)
    steak.recipe = [RecipeItem(stock_item_id=beef.id, quantity=Decimal("0.3"))]
    bread = MenuItem(name="Bread Basket", category="Starters", price=Decimal("3.00"), track_stock=False)

    db_session.add_all([fried_rice, soda, steak, bread])
    db_session.commit()

    return {
        "rice": rice,
        "oil": oil,
        "cola": cola,
        "beef": beef,
        "fried_rice": fried_rice,
        "soda": soda,
        "steak": steak,
        "bread": bread,
        "db": db_session,
    }
