import os
import sys
from datetime import datetime
from decimal import Decimal

import pytest

os.environ.setdefault("KIOSK_PRICING_DATABASE_URL", "sqlite://")

# Add src to path for internal imports
src_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from kiosk_pricing.config.settings import Settings
from kiosk_pricing.db.database import init_db, make_engine, make_session_factory
from kiosk_pricing.db.tables import CategoryRow, ProductRow, SupplierRow

# Monday 2026-10-19 14:30, weekday index 1
MONDAY_AFTERNOON = datetime(2026, 10, 19, 14, 30)


@pytest.fixture
def settings(tmp_path):
    return Settings(project_root=tmp_path, database_url="sqlite://", timezone="UTC")


@pytest.fixture
def db():
    engine = make_engine("sqlite://")
    init_db(engine)
    session = make_session_factory(engine)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def catalog(db):
    """
    drinks: cola 100, juice 250, water 999
    snacks: chips 80
    bakery: no products
    acme supplies cola, juice and chips; beta supplies water; gamma supplies nothing
    """
    db.add_all([
        CategoryRow(id="drinks", name="Drinks"),
        CategoryRow(id="snacks", name="Snacks"),
        CategoryRow(id="bakery", name="Bakery"),
        SupplierRow(id="acme", name="Acme"),
        SupplierRow(id="beta", name="Beta"),
        SupplierRow(id="gamma", name="Gamma"),
    ])
    db.flush()
    db.add_all([
        ProductRow(id="cola", name="Cola", price=Decimal("100"), cost=Decimal("60"), stock=10,
                   category_id="drinks", supplier_id="acme"),
        ProductRow(id="juice", name="Juice", price=Decimal("250"), cost=Decimal("150"), stock=5,
                   category_id="drinks", supplier_id="acme"),
        ProductRow(id="water", name="Water", price=Decimal("999"), cost=Decimal("500"), stock=20,
                   category_id="drinks", supplier_id="beta"),
        ProductRow(id="chips", name="Chips", price=Decimal("80"), cost=Decimal("40"), stock=8,
                   category_id="snacks", supplier_id="acme"),
    ])
    db.commit()
    return db


def prices(db, *product_ids):
    """Fresh read of product prices straight from the database."""
    db.expire_all()
    return {pid: db.get(ProductRow, pid).price for pid in product_ids}
