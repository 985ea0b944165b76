"""
Revisions API - FastAPI router for bulk price changes and their history.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..config.settings import Settings, get_settings
from ..db.database import get_db
from ..services.bulk_revision_service import BulkFilter, BulkRevisionService, PriceRevision

router = APIRouter(prefix="/api/revisions", tags=["revisions"])


class BulkRequest(BaseModel):
    """Target exactly one of: explicit product ids, a category or a supplier."""
    product_ids: Optional[list[str]] = None
    category_id: Optional[str] = None
    supplier_id: Optional[str] = None
    percentage: Decimal
    include_cost: bool = False

    def to_filter(self) -> BulkFilter:
        return BulkFilter.from_request(
            product_ids=self.product_ids,
            category_id=self.category_id,
            supplier_id=self.supplier_id,
        )


class ApplyRequest(BulkRequest):
    actor: Optional[str] = None
    operation_token: Optional[str] = None


class RevertRequest(BaseModel):
    actor: Optional[str] = None


class AffectedProductModel(BaseModel):
    product_id: str
    name: str
    previous_price: Decimal
    previous_cost: Decimal
    new_price: Decimal
    new_cost: Decimal


class DiscrepancyModel(BaseModel):
    product_id: str
    name: str
    reason: str


class RevisionResponse(BaseModel):
    id: str
    created_at: datetime
    description: str
    user_name: str
    action_type: str
    percentage: Optional[Decimal] = None
    filter_mode: Optional[str] = None
    filter_value: Any = None
    source_revision_id: Optional[str] = None
    reverted_by: Optional[str] = None
    revertible: bool
    affected_products: list[AffectedProductModel]
    discrepancies: list[DiscrepancyModel]

    @classmethod
    def from_domain(cls, revision: PriceRevision) -> 'RevisionResponse':
        return cls(
            id=revision.id,
            created_at=revision.created_at,
            description=revision.description,
            user_name=revision.user_name,
            action_type=revision.action_type,
            percentage=revision.percentage,
            filter_mode=revision.filter_mode,
            filter_value=revision.filter_value,
            source_revision_id=revision.source_revision_id,
            reverted_by=revision.reverted_by,
            revertible=revision.revertible,
            affected_products=[AffectedProductModel(**vars(a)) for a in revision.affected_products],
            discrepancies=[DiscrepancyModel(**vars(d)) for d in revision.discrepancies],
        )


class PreviewLineModel(BaseModel):
    product_id: str
    name: str
    current_price: Decimal
    new_price: Decimal
    current_cost: Decimal
    new_cost: Decimal
    checkout_price: Optional[Decimal] = None
    price_list_id: Optional[str] = None
    warning: Optional[str] = None


class PreviewResponse(BaseModel):
    description: str
    percentage: Decimal
    count: int
    lines: list[PreviewLineModel]


# Endpoints

@router.get("", response_model=list[RevisionResponse])
def list_revisions(
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Most recent revisions first."""
    revisions = BulkRevisionService(db, settings).list_revisions(limit=limit)
    return [RevisionResponse.from_domain(r) for r in revisions]


@router.post("/preview", response_model=PreviewResponse)
def preview_bulk_change(
    request: BulkRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Show the prices a bulk change would produce, without applying it."""
    preview = BulkRevisionService(db, settings).preview_bulk_change(
        request.to_filter(), request.percentage, include_cost=request.include_cost
    )
    return PreviewResponse(
        description=preview.description,
        percentage=preview.percentage,
        count=preview.count,
        lines=[PreviewLineModel(**vars(line)) for line in preview.lines],
    )


@router.post("", response_model=RevisionResponse, status_code=201)
def apply_bulk_change(
    request: ApplyRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Apply a percentage increase and record it as a revertible revision."""
    revision = BulkRevisionService(db, settings).apply_bulk_change(
        request.to_filter(),
        request.percentage,
        actor=request.actor,
        include_cost=request.include_cost,
        operation_token=request.operation_token,
    )
    return RevisionResponse.from_domain(revision)


@router.get("/{revision_id}", response_model=RevisionResponse)
def get_revision(
    revision_id: str,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return RevisionResponse.from_domain(BulkRevisionService(db, settings).get_revision(revision_id))


@router.post("/{revision_id}/revert", response_model=RevisionResponse, status_code=201)
def revert_revision(
    revision_id: str,
    request: Optional[RevertRequest] = None,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Restore every product touched by an APPLY revision to its prior price."""
    actor = request.actor if request else None
    revision = BulkRevisionService(db, settings).revert_revision(revision_id, actor=actor)
    return RevisionResponse.from_domain(revision)
