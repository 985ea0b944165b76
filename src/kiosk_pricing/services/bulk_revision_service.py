"""
Bulk Revision Service - Percentage price changes across many products.

Every apply writes one append-only APPLY record holding a before/after
snapshot of each product it touched; a revert writes a REVERT record pointing
back at it and restores the snapshot verbatim. Each operation is one
transaction: either all product updates and the record commit together, or
nothing does.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..config.settings import Settings, get_settings
from ..db.tables import (
    ACTION_APPLY,
    ACTION_REVERT,
    CategoryRow,
    PriceRevisionRow,
    ProductRow,
    SupplierRow,
    new_id,
    utcnow,
)
from ..engine.models import Product
from ..engine.price_calculator import apply_percentage, quote_price, round_currency
from ..errors import (
    AlreadyRevertedError,
    ConfigurationError,
    InvalidBulkRequestError,
    NotRevertibleError,
    RevisionNotFoundError,
    TransactionFailedError,
)
from ..policy.price_list_resolver import resolve_active_list
from .price_list_service import PriceListService

logger = logging.getLogger(__name__)

FILTER_MODES = ('selection', 'category', 'supplier')

UNKNOWN_USER = "Unknown user"


def resolve_actor_name(actor: Any) -> str:
    """
    Display name for whoever triggered the change.

    Accepts a plain name, a profile mapping (full_name, then email) or any
    object exposing the same attributes.
    """
    if actor is None:
        return UNKNOWN_USER
    if isinstance(actor, str):
        return actor.strip() or UNKNOWN_USER
    if isinstance(actor, dict):
        return actor.get('full_name') or actor.get('email') or UNKNOWN_USER
    return getattr(actor, 'full_name', None) or getattr(actor, 'email', None) or UNKNOWN_USER


@dataclass(frozen=True)
class BulkFilter:
    """Which products a bulk change targets: exactly one of three modes."""
    mode: str
    product_ids: tuple[str, ...] = ()
    target_id: Optional[str] = None

    @classmethod
    def selection(cls, product_ids: Iterable[str]) -> 'BulkFilter':
        ids = tuple(dict.fromkeys(str(pid) for pid in product_ids if pid))
        return cls(mode='selection', product_ids=ids)

    @classmethod
    def category(cls, category_id: str) -> 'BulkFilter':
        return cls(mode='category', target_id=str(category_id) if category_id else None)

    @classmethod
    def supplier(cls, supplier_id: str) -> 'BulkFilter':
        return cls(mode='supplier', target_id=str(supplier_id) if supplier_id else None)

    @classmethod
    def from_request(
        cls,
        product_ids: Optional[Iterable[str]] = None,
        category_id: Optional[str] = None,
        supplier_id: Optional[str] = None,
    ) -> 'BulkFilter':
        """Build a filter from optional request fields, insisting on exactly one."""
        given = [name for name, value in (
            ('product_ids', product_ids),
            ('category_id', category_id),
            ('supplier_id', supplier_id),
        ) if value]
        if len(given) != 1:
            raise InvalidBulkRequestError(
                "Exactly one of product_ids, category_id or supplier_id must be given"
                + (f" (got {', '.join(given)})" if given else "")
            )
        if product_ids:
            return cls.selection(product_ids)
        if category_id:
            return cls.category(category_id)
        return cls.supplier(supplier_id)

    def validate(self):
        if self.mode not in FILTER_MODES:
            raise InvalidBulkRequestError(f"Unknown filter mode '{self.mode}'")
        if self.mode == 'selection' and not self.product_ids:
            raise InvalidBulkRequestError("No products selected")
        if self.mode != 'selection' and not self.target_id:
            raise InvalidBulkRequestError(f"A {self.mode} id is required")

    def to_value(self):
        return list(self.product_ids) if self.mode == 'selection' else self.target_id


@dataclass
class AffectedProduct:
    """Before/after snapshot of one product in a revision."""
    product_id: str
    name: str
    previous_price: Decimal
    previous_cost: Decimal
    new_price: Decimal
    new_cost: Decimal

    def to_dict(self) -> dict:
        return {
            'product_id': self.product_id,
            'name': self.name,
            'previous_price': str(self.previous_price),
            'previous_cost': str(self.previous_cost),
            'new_price': str(self.new_price),
            'new_cost': str(self.new_cost),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'AffectedProduct':
        return cls(
            product_id=data['product_id'],
            name=data.get('name', ''),
            previous_price=Decimal(data['previous_price']),
            previous_cost=Decimal(data['previous_cost']),
            new_price=Decimal(data['new_price']),
            new_cost=Decimal(data['new_cost']),
        )


@dataclass
class Discrepancy:
    """A product a revert could not restore."""
    product_id: str
    name: str
    reason: str

    def to_dict(self) -> dict:
        return {'product_id': self.product_id, 'name': self.name, 'reason': self.reason}


@dataclass
class PriceRevision:
    """Audit record of a bulk change (APPLY) or of its undo (REVERT)."""
    id: str
    created_at: datetime
    description: str
    user_name: str
    action_type: str
    affected_products: list[AffectedProduct] = field(default_factory=list)
    source_revision_id: Optional[str] = None
    discrepancies: list[Discrepancy] = field(default_factory=list)
    percentage: Optional[Decimal] = None
    filter_mode: Optional[str] = None
    filter_value: Any = None
    operation_token: Optional[str] = None
    reverted_by: Optional[str] = None

    @property
    def revertible(self) -> bool:
        return self.action_type == ACTION_APPLY and self.reverted_by is None

    @classmethod
    def from_row(cls, row: PriceRevisionRow, reverted_by: Optional[str] = None) -> 'PriceRevision':
        return cls(
            id=row.id,
            created_at=row.created_at,
            description=row.description,
            user_name=row.user_name,
            action_type=row.action_type,
            affected_products=[AffectedProduct.from_dict(a) for a in (row.affected_products or [])],
            source_revision_id=row.source_revision_id,
            discrepancies=[Discrepancy(**d) for d in (row.discrepancies or [])],
            percentage=row.percentage,
            filter_mode=row.filter_mode,
            filter_value=row.filter_value,
            operation_token=row.operation_token,
            reverted_by=reverted_by,
        )


@dataclass
class PreviewLine:
    """What one product would look like after a bulk change."""
    product_id: str
    name: str
    current_price: Decimal
    new_price: Decimal
    current_cost: Decimal
    new_cost: Decimal
    checkout_price: Optional[Decimal] = None
    price_list_id: Optional[str] = None
    warning: Optional[str] = None


@dataclass
class BulkPreview:
    description: str
    percentage: Decimal
    lines: list[PreviewLine] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.lines)


class BulkRevisionService:
    """Applies, previews, lists and reverts bulk price revisions."""

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Matching and validation
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_percentage(percentage) -> Decimal:
        try:
            pct = Decimal(str(percentage))
        except (InvalidOperation, ValueError):
            raise InvalidBulkRequestError(f"Percentage must be a number, got {percentage!r}")
        if not pct.is_finite() or pct <= 0:
            raise InvalidBulkRequestError(f"Percentage must be greater than 0, got {percentage}")
        return pct

    def _match_products(self, bulk_filter: BulkFilter, lock: bool = False) -> tuple[list[ProductRow], str]:
        """Products targeted by the filter plus a label naming the target."""
        bulk_filter.validate()
        query = self.db.query(ProductRow)

        if bulk_filter.mode == 'selection':
            query = query.filter(ProductRow.id.in_(bulk_filter.product_ids))
            label = "selected products"
        elif bulk_filter.mode == 'category':
            category = self.db.get(CategoryRow, bulk_filter.target_id)
            if category is None:
                raise InvalidBulkRequestError(f"Category '{bulk_filter.target_id}' not found")
            query = query.filter(ProductRow.category_id == category.id)
            label = f"category {category.name}"
        else:
            supplier = self.db.get(SupplierRow, bulk_filter.target_id)
            if supplier is None:
                raise InvalidBulkRequestError(f"Supplier '{bulk_filter.target_id}' not found")
            query = query.filter(ProductRow.supplier_id == supplier.id)
            label = f"supplier {supplier.name}"

        if lock:
            query = query.with_for_update()
        products = query.order_by(ProductRow.name, ProductRow.id).all()

        if bulk_filter.mode == 'selection':
            missing = set(bulk_filter.product_ids) - {p.id for p in products}
            if missing:
                logger.warning("Bulk selection ignores %d unknown product(s): %s", len(missing), sorted(missing))

        if not products:
            raise InvalidBulkRequestError(f"No products match the {label}")
        return products, label

    def _describe(self, pct: Decimal, count: int, label: str, bulk_filter: BulkFilter) -> str:
        noun = "product" if count == 1 else "products"
        description = f"+{pct.normalize():f}% on {count} {noun}"
        if bulk_filter.mode != 'selection':
            description += f" ({label})"
        return description

    def _new_values(self, row: ProductRow, pct: Decimal, include_cost: bool) -> tuple[Decimal, Decimal]:
        decimals = self.settings.currency_decimals
        new_price = round_currency(apply_percentage(row.price, pct), decimals)
        new_cost = round_currency(apply_percentage(row.cost, pct), decimals) if include_cost else row.cost
        return new_price, new_cost

    # ------------------------------------------------------------------
    # Preview
    # ------------------------------------------------------------------

    def preview_bulk_change(
        self,
        bulk_filter: BulkFilter,
        percentage,
        include_cost: bool = False,
        now: Optional[datetime] = None,
    ) -> BulkPreview:
        """
        Show what an apply would do without touching anything.

        The checkout price runs the new base price through the price list
        active at `now`, so the operator sees what customers would pay.
        """
        pct = self._parse_percentage(percentage)
        products, label = self._match_products(bulk_filter)

        at = now or self.settings.now()
        active_list = resolve_active_list(PriceListService(self.db).list_price_lists(), at)

        preview = BulkPreview(
            description=self._describe(pct, len(products), label, bulk_filter),
            percentage=pct,
        )
        for row in products:
            new_price, new_cost = self._new_values(row, pct, include_cost)
            line = PreviewLine(
                product_id=row.id,
                name=row.name,
                current_price=row.price,
                new_price=new_price,
                current_cost=row.cost,
                new_cost=new_cost,
                price_list_id=active_list.id if active_list else None,
            )
            repriced = Product(
                id=row.id, price=new_price, cost=new_cost, name=row.name,
                category_id=row.category_id, supplier_id=row.supplier_id,
            )
            try:
                line.checkout_price = quote_price(repriced, active_list).unit_price
            except ConfigurationError as e:
                line.warning = str(e)
            preview.lines.append(line)
        return preview

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def _find_by_token(self, operation_token: str) -> Optional[PriceRevisionRow]:
        return (
            self.db.query(PriceRevisionRow)
            .filter(PriceRevisionRow.operation_token == operation_token)
            .first()
        )

    def apply_bulk_change(
        self,
        bulk_filter: BulkFilter,
        percentage,
        actor: Any = None,
        include_cost: bool = False,
        operation_token: Optional[str] = None,
    ) -> PriceRevision:
        """
        Raise the price of every matched product by `percentage`.

        Cost moves too only when `include_cost` is set; both are snapshotted
        either way. A repeated `operation_token` returns the revision it
        already produced instead of applying twice.
        """
        pct = self._parse_percentage(percentage)

        if operation_token:
            existing = self._find_by_token(operation_token)
            if existing is not None:
                logger.info("Operation token %s already applied as revision %s", operation_token, existing.id)
                return PriceRevision.from_row(existing, self._reverted_by([existing.id]).get(existing.id))

        try:
            products, label = self._match_products(bulk_filter, lock=True)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Bulk apply could not lock products", exc_info=True)
            raise TransactionFailedError("Bulk price change failed; no prices were changed") from e

        affected = []
        try:
            for row in products:
                new_price, new_cost = self._new_values(row, pct, include_cost)
                affected.append(AffectedProduct(
                    product_id=row.id,
                    name=row.name,
                    previous_price=row.price,
                    previous_cost=row.cost,
                    new_price=new_price,
                    new_cost=new_cost,
                ))
                row.price = new_price
                row.cost = new_cost

            revision = PriceRevisionRow(
                id=new_id(),
                created_at=utcnow(),
                description=self._describe(pct, len(affected), label, bulk_filter),
                user_name=resolve_actor_name(actor),
                action_type=ACTION_APPLY,
                percentage=pct,
                filter_mode=bulk_filter.mode,
                filter_value=bulk_filter.to_value(),
                affected_products=[a.to_dict() for a in affected],
                discrepancies=[],
                operation_token=operation_token,
            )
            self.db.add(revision)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if operation_token:
                existing = self._find_by_token(operation_token)
                if existing is not None:
                    logger.info("Concurrent apply with token %s lost the race to %s", operation_token, existing.id)
                    return PriceRevision.from_row(existing)
            logger.error("Bulk apply rolled back", exc_info=True)
            raise TransactionFailedError("Bulk price change failed; no prices were changed") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Bulk apply rolled back", exc_info=True)
            raise TransactionFailedError("Bulk price change failed; no prices were changed") from e

        logger.info("Applied revision %s: %s by %s", revision.id, revision.description, revision.user_name)
        return PriceRevision.from_row(revision)

    # ------------------------------------------------------------------
    # Revert
    # ------------------------------------------------------------------

    def revert_revision(self, revision_id: str, actor: Any = None) -> PriceRevision:
        """
        Undo an APPLY by writing back its snapshot verbatim.

        Products deleted since the APPLY are skipped and recorded as
        discrepancies on the REVERT record; everything else is restored.
        """
        source = self.db.get(PriceRevisionRow, revision_id)
        if source is None:
            raise RevisionNotFoundError(revision_id)
        if source.action_type != ACTION_APPLY:
            raise NotRevertibleError(revision_id, source.action_type)

        reverted_by = self._reverted_by([source.id]).get(source.id)
        if reverted_by is not None:
            raise AlreadyRevertedError(revision_id, reverted_by)

        snapshot = [AffectedProduct.from_dict(a) for a in (source.affected_products or [])]
        rows = {}
        if snapshot:
            ids = [a.product_id for a in snapshot]
            try:
                rows = {
                    row.id: row
                    for row in self.db.query(ProductRow).filter(ProductRow.id.in_(ids)).with_for_update().all()
                }
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error("Revert of %s could not lock products", revision_id, exc_info=True)
                raise TransactionFailedError(
                    f"Revert of revision '{revision_id}' failed; no prices were changed"
                ) from e

        restored = []
        discrepancies = []
        try:
            for entry in snapshot:
                row = rows.get(entry.product_id)
                if row is None:
                    discrepancies.append(Discrepancy(
                        product_id=entry.product_id,
                        name=entry.name,
                        reason="product no longer exists",
                    ))
                    continue
                restored.append(AffectedProduct(
                    product_id=row.id,
                    name=row.name,
                    previous_price=row.price,
                    previous_cost=row.cost,
                    new_price=entry.previous_price,
                    new_cost=entry.previous_cost,
                ))
                row.price = entry.previous_price
                row.cost = entry.previous_cost

            revert = PriceRevisionRow(
                id=new_id(),
                created_at=utcnow(),
                description=f"Revert of: {source.description}",
                user_name=resolve_actor_name(actor),
                action_type=ACTION_REVERT,
                percentage=source.percentage,
                filter_mode=source.filter_mode,
                filter_value=source.filter_value,
                affected_products=[a.to_dict() for a in restored],
                discrepancies=[d.to_dict() for d in discrepancies],
                source_revision_id=source.id,
            )
            self.db.add(revert)
            self.db.commit()
        except IntegrityError as e:
            # Unique source_revision_id: another revert of this APPLY committed first
            self.db.rollback()
            logger.warning("Revert of %s lost a race to a concurrent revert", revision_id)
            raise AlreadyRevertedError(revision_id) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Revert of %s rolled back", revision_id, exc_info=True)
            raise TransactionFailedError(f"Revert of revision '{revision_id}' failed; no prices were changed") from e

        for d in discrepancies:
            logger.warning("Revert %s skipped product %s: %s", revert.id, d.product_id, d.reason)
        logger.info(
            "Reverted revision %s as %s (%d restored, %d skipped)",
            revision_id, revert.id, len(restored), len(discrepancies),
        )
        return PriceRevision.from_row(revert)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def _reverted_by(self, revision_ids: list[str]) -> dict[str, str]:
        """Map APPLY id -> id of the REVERT that undid it."""
        if not revision_ids:
            return {}
        rows = (
            self.db.query(PriceRevisionRow.id, PriceRevisionRow.source_revision_id)
            .filter(PriceRevisionRow.source_revision_id.in_(revision_ids))
            .all()
        )
        return {source_id: revert_id for revert_id, source_id in rows}

    def get_revision(self, revision_id: str) -> PriceRevision:
        row = self.db.get(PriceRevisionRow, revision_id)
        if row is None:
            raise RevisionNotFoundError(revision_id)
        return PriceRevision.from_row(row, self._reverted_by([row.id]).get(row.id))

    def list_revisions(self, limit: Optional[int] = None) -> list[PriceRevision]:
        """Most recent revisions first, each flagged with whether it can still be reverted."""
        if limit is None:
            limit = self.settings.history_limit
        if limit < 1:
            raise InvalidBulkRequestError(f"History limit must be at least 1, got {limit}")
        rows = (
            self.db.query(PriceRevisionRow)
            .order_by(PriceRevisionRow.created_at.desc())
            .limit(limit)
            .all()
        )
        reverted = self._reverted_by([r.id for r in rows if r.action_type == ACTION_APPLY])
        return [PriceRevision.from_row(r, reverted.get(r.id)) for r in rows]
