"""
ORM models for products, price lists and the price revision log.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    event,
)

from ..engine.models import PriceList, Product, ScheduleRule
from ..errors import ImmutableRecordError
from .database import Base

ACTION_APPLY = "APPLY"
ACTION_REVERT = "REVERT"


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CategoryRow(Base):
    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(120), nullable=False)

    def __repr__(self):
        return f"<Category(id={self.id}, name='{self.name}')>"


class SupplierRow(Base):
    __tablename__ = "suppliers"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(120), nullable=False)

    def __repr__(self):
        return f"<Supplier(id={self.id}, name='{self.name}')>"


class ProductRow(Base):
    """
    Sellable product.

    `price` and `cost` are mutated by explicit edits and by bulk revisions.
    """
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False, default="")
    price = Column(Numeric(14, 4), nullable=False, default=Decimal(0))
    cost = Column(Numeric(14, 4), nullable=False, default=Decimal(0))
    stock = Column(Integer, nullable=False, default=0)
    category_id = Column(String(36), ForeignKey("categories.id"), nullable=True, index=True)
    supplier_id = Column(String(36), ForeignKey("suppliers.id"), nullable=True, index=True)

    def to_domain(self) -> Product:
        return Product(
            id=self.id,
            name=self.name or "",
            price=self.price,
            cost=self.cost,
            stock=self.stock or 0,
            category_id=self.category_id,
            supplier_id=self.supplier_id,
        )

    def __repr__(self):
        return f"<Product(id={self.id}, price={self.price})>"


class PriceListRow(Base):
    """Price list with its schedule and exclusions stored as JSON arrays."""
    __tablename__ = "price_lists"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(120), nullable=False)
    adjustment_percentage = Column(Numeric(7, 2), nullable=False, default=Decimal(0))
    rounding_rule = Column(String(20), nullable=False, default="none")
    is_active = Column(Boolean, nullable=False, default=True)
    schedule = Column(JSON, nullable=True)
    excluded_category_ids = Column(JSON, nullable=False, default=list)
    excluded_product_ids = Column(JSON, nullable=False, default=list)
    priority = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_domain(self) -> PriceList:
        return PriceList(
            id=self.id,
            name=self.name,
            adjustment_percentage=self.adjustment_percentage,
            rounding_rule=self.rounding_rule,
            is_active=bool(self.is_active),
            schedule=[ScheduleRule.from_dict(r) for r in (self.schedule or [])],
            excluded_category_ids=self.excluded_category_ids or [],
            excluded_product_ids=self.excluded_product_ids or [],
            priority=self.priority or 0,
            created_at=self.created_at,
        )

    def __repr__(self):
        return f"<PriceList(id={self.id}, name='{self.name}', priority={self.priority})>"


class PriceRevisionRow(Base):
    """
    Append-only audit record of a bulk price change or of its revert.

    The unique constraint on `source_revision_id` is what stops two reverts
    of the same APPLY from both committing.
    """
    __tablename__ = "price_revisions"

    id = Column(String(36), primary_key=True, default=new_id)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    description = Column(String(255), nullable=False)
    user_name = Column(String(120), nullable=False)
    action_type = Column(String(10), nullable=False, index=True)
    percentage = Column(Numeric(7, 2), nullable=True)
    filter_mode = Column(String(20), nullable=True)
    filter_value = Column(JSON, nullable=True)
    affected_products = Column(JSON, nullable=False, default=list)
    discrepancies = Column(JSON, nullable=False, default=list)
    source_revision_id = Column(
        String(36), ForeignKey("price_revisions.id"), nullable=True, unique=True
    )
    operation_token = Column(String(64), nullable=True, unique=True)

    def __repr__(self):
        return f"<PriceRevision(id={self.id}, action={self.action_type}, products={len(self.affected_products or [])})>"


@event.listens_for(PriceRevisionRow, "before_update")
def _refuse_revision_update(mapper, connection, target):
    raise ImmutableRecordError(f"Price revision '{target.id}' is immutable")


@event.listens_for(PriceRevisionRow, "before_delete")
def _refuse_revision_delete(mapper, connection, target):
    raise ImmutableRecordError(f"Price revision '{target.id}' cannot be deleted")
