#!/usr/bin/env python
"""
Debug harness for price resolution and bulk revisions.

Builds a throwaway in-memory catalogue, then prints the resolver trace, a
priced product, a bulk preview and an apply/revert round trip.

Usage:
    python scripts/debug_price_logic.py
"""
import sys
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import pandas as pd

# Add src to path
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from kiosk_pricing.config.settings import get_settings
from kiosk_pricing.db.database import init_db, make_engine, make_session_factory
from kiosk_pricing.db.tables import CategoryRow, ProductRow
from kiosk_pricing.engine.models import PriceList, ScheduleRule
from kiosk_pricing.engine.pricing_engine import PricingEngine
from kiosk_pricing.engine.schedule_matcher import weekday_index
from kiosk_pricing.services.bulk_revision_service import BulkFilter, BulkRevisionService
from kiosk_pricing.services.price_list_service import PriceListService
from kiosk_pricing.services.reports import history_frame, preview_frame, revision_frame


def seed(db, now: datetime):
    db.add(CategoryRow(id="drinks", name="Drinks"))
    db.add_all([
        ProductRow(id="cola", name="Cola", price=Decimal("100"), cost=Decimal("60"), category_id="drinks"),
        ProductRow(id="juice", name="Juice", price=Decimal("250"), cost=Decimal("150"), category_id="drinks"),
        ProductRow(id="water", name="Water", price=Decimal("999"), cost=Decimal("500"), category_id="drinks"),
    ])
    db.commit()

    lists = PriceListService(db)
    lists.create_price_list(PriceList(id="base", name="Base list", priority=0))
    lists.create_price_list(PriceList(
        id="happy-hour",
        name="Happy Hour",
        adjustment_percentage=Decimal("-10"),
        rounding_rule="nearest_50",
        schedule=[ScheduleRule(day=weekday_index(now), start="00:00", end="23:59")],
        priority=10,
    ))


def debug():
    settings = get_settings()
    engine = make_engine("sqlite://")
    init_db(engine)
    db = make_session_factory(engine)()
    now = settings.now()
    seed(db, now)

    pricing = PricingEngine(db, settings)

    print("--- Resolution ---")
    resolution = pricing.resolve(now)
    print(resolution.get_trace_text())
    print(f"Active list: {resolution.active_list.name if resolution.active_list else None}")

    print("\n--- Quote: water ---")
    print(pricing.quote("water", now).get_trace_text())

    print("\n--- Fallback with Happy Hour disabled ---")
    PriceListService(db).update_price_list("happy-hour", {"is_active": False})
    print(pricing.resolve(now).get_trace_text())
    PriceListService(db).update_price_list("happy-hour", {"is_active": True})

    revisions = BulkRevisionService(db, settings)
    drinks = BulkFilter.category("drinks")

    print("\n--- Preview +10% on drinks ---")
    with pd.option_context('display.width', 120):
        print(preview_frame(revisions.preview_bulk_change(drinks, 10, now=now)))

    print("\n--- Apply ---")
    applied = revisions.apply_bulk_change(drinks, 10, actor="debug")
    print(applied.description)
    print(revision_frame(applied))

    print("\n--- Revert ---")
    reverted = revisions.revert_revision(applied.id, actor="debug")
    print(reverted.description)
    print(revision_frame(reverted))

    print("\n--- History ---")
    print(history_frame(revisions.list_revisions()))
    db.close()


if __name__ == "__main__":
    debug()
