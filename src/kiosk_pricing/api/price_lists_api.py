"""
Price Lists API - FastAPI router for price list management.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..config.settings import Settings, get_settings
from ..db.database import get_db
from ..engine.models import PriceList, ScheduleRule
from ..errors import PriceListNotFoundError
from ..services.price_list_service import PriceListService

router = APIRouter(prefix="/api/price-lists", tags=["price-lists"])


class ScheduleRuleModel(BaseModel):
    day: int
    start: str
    end: str


class PriceListCreate(BaseModel):
    """Request model for creating a price list."""
    id: Optional[str] = None
    name: str
    adjustment_percentage: Decimal = Decimal(0)
    rounding_rule: str = "none"
    is_active: bool = True
    schedule: list[ScheduleRuleModel] = []
    excluded_category_ids: list[str] = []
    excluded_product_ids: list[str] = []
    priority: int = 0

    def to_domain(self) -> PriceList:
        return PriceList(
            id=self.id or "",
            name=self.name,
            adjustment_percentage=self.adjustment_percentage,
            rounding_rule=self.rounding_rule,
            is_active=self.is_active,
            schedule=[ScheduleRule(day=r.day, start=r.start, end=r.end) for r in self.schedule],
            excluded_category_ids=self.excluded_category_ids,
            excluded_product_ids=self.excluded_product_ids,
            priority=self.priority,
        )


class PriceListUpdate(BaseModel):
    """Request model for updating a price list."""
    name: Optional[str] = None
    adjustment_percentage: Optional[Decimal] = None
    rounding_rule: Optional[str] = None
    is_active: Optional[bool] = None
    schedule: Optional[list[ScheduleRuleModel]] = None
    excluded_category_ids: Optional[list[str]] = None
    excluded_product_ids: Optional[list[str]] = None
    priority: Optional[int] = None


class PriceListResponse(BaseModel):
    """Response model for a price list."""
    id: str
    name: str
    adjustment_percentage: Decimal
    rounding_rule: str
    is_active: bool
    schedule: list[ScheduleRuleModel]
    excluded_category_ids: list[str]
    excluded_product_ids: list[str]
    priority: int
    created_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, pl: PriceList) -> 'PriceListResponse':
        return cls(
            id=pl.id,
            name=pl.name,
            adjustment_percentage=pl.adjustment_percentage,
            rounding_rule=pl.rounding_rule,
            is_active=pl.is_active,
            schedule=[ScheduleRuleModel(**r.to_dict()) for r in pl.schedule],
            excluded_category_ids=sorted(pl.excluded_category_ids),
            excluded_product_ids=sorted(pl.excluded_product_ids),
            priority=pl.priority,
            created_at=pl.created_at,
        )


class ValidationResponse(BaseModel):
    valid: bool
    errors: list[str]
    warnings: list[str]


class TraceStepModel(BaseModel):
    step: str
    description: str
    value: Optional[str] = None


class ResolutionResponse(BaseModel):
    """Which list is active at an instant, and why."""
    at: datetime
    active: Optional[PriceListResponse]
    trace: list[TraceStepModel]
    warnings: list[str]


# Endpoints

@router.get("", response_model=list[PriceListResponse])
def list_price_lists(include_inactive: bool = True, db: Session = Depends(get_db)):
    """List all price lists in definition order."""
    lists = PriceListService(db).list_price_lists(include_inactive=include_inactive)
    return [PriceListResponse.from_domain(pl) for pl in lists]


@router.get("/stats")
def get_stats(db: Session = Depends(get_db), settings: Settings = Depends(get_settings)):
    """Get price list statistics."""
    return PriceListService(db).get_stats(at=settings.now())


@router.get("/active", response_model=ResolutionResponse)
def get_active_price_list(
    at: Optional[datetime] = None,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Resolve the price list active now, or at `at`."""
    resolution = PriceListService(db).resolve(at or settings.now())
    return ResolutionResponse(
        at=resolution.at,
        active=PriceListResponse.from_domain(resolution.active_list) if resolution.active_list else None,
        trace=[TraceStepModel(step=t.step, description=t.description, value=t.value) for t in resolution.trace],
        warnings=resolution.warnings,
    )


@router.post("/validate", response_model=ValidationResponse)
def validate_price_list(data: PriceListCreate, db: Session = Depends(get_db)):
    """Validate a price list without saving."""
    result = PriceListService(db).validate_price_list(data.to_domain())
    return ValidationResponse(valid=result.valid, errors=result.errors, warnings=result.warnings)


@router.get("/{price_list_id}", response_model=PriceListResponse)
def get_price_list(price_list_id: str, db: Session = Depends(get_db)):
    pl = PriceListService(db).get_price_list(price_list_id)
    if pl is None:
        raise PriceListNotFoundError(price_list_id)
    return PriceListResponse.from_domain(pl)


@router.post("", response_model=PriceListResponse, status_code=201)
def create_price_list(data: PriceListCreate, db: Session = Depends(get_db)):
    """Create a new price list."""
    created = PriceListService(db).create_price_list(data.to_domain())
    return PriceListResponse.from_domain(created)


@router.put("/{price_list_id}", response_model=PriceListResponse)
def update_price_list(price_list_id: str, updates: PriceListUpdate, db: Session = Depends(get_db)):
    """Update an existing price list; only fields present in the body change."""
    update_dict = updates.model_dump(exclude_unset=True)
    updated = PriceListService(db).update_price_list(price_list_id, update_dict)
    return PriceListResponse.from_domain(updated)


@router.delete("/{price_list_id}")
def delete_price_list(price_list_id: str, db: Session = Depends(get_db)):
    PriceListService(db).delete_price_list(price_list_id)
    return {"success": True, "message": f"Price list '{price_list_id}' deleted"}
