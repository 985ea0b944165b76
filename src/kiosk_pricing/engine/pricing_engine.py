"""
Pricing Engine - Checkout-time price resolution with traceability.

Resolution order:
1. Load every price list in definition order
2. Resolve the single list active at the requested instant
3. For each product: apply the list's adjustment, exclusions and rounding
"""
import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ..config.settings import Settings, get_settings
from ..db.tables import PriceListRow, ProductRow
from ..errors import ProductNotFoundError
from ..policy.price_list_resolver import resolve_with_trace
from .models import PriceList, PriceQuote, Resolution
from .price_calculator import quote_price

logger = logging.getLogger(__name__)


class PricingEngine:
    """
    Prices products for a sale.

    Holds no cached state: price lists are read and resolved on every call
    because "now" keeps moving.
    """

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    def load_price_lists(self) -> list[PriceList]:
        rows = self.db.query(PriceListRow).order_by(PriceListRow.created_at, PriceListRow.id).all()
        return [row.to_domain() for row in rows]

    def resolve(self, at: Optional[datetime] = None) -> Resolution:
        """Resolve the list active at `at` (default: now in the configured timezone)."""
        return resolve_with_trace(self.load_price_lists(), at or self.settings.now())

    def quote(self, product_id: str, at: Optional[datetime] = None) -> PriceQuote:
        """Price a single product."""
        return self.quote_many([product_id], at)[0]

    def quote_many(self, product_ids: Iterable[str], at: Optional[datetime] = None) -> list[PriceQuote]:
        """
        Price several products against one resolution.

        Raises ProductNotFoundError for an unknown id and NegativePriceError
        when the active list is misconfigured.
        """
        product_ids = [str(pid) for pid in product_ids]
        rows = {
            row.id: row
            for row in self.db.query(ProductRow).filter(ProductRow.id.in_(product_ids)).all()
        }
        for pid in product_ids:
            if pid not in rows:
                raise ProductNotFoundError(pid)

        resolution = self.resolve(at)
        for warning in resolution.warnings:
            logger.warning(warning)

        quotes = []
        for pid in product_ids:
            quote = quote_price(rows[pid].to_domain(), resolution.active_list)
            quote.trace = resolution.trace + quote.trace
            quote.warnings.extend(resolution.warnings)
            quotes.append(quote)
        return quotes
