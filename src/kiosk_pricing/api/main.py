"""
Main FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from .. import __version__
from ..config.settings import Settings, get_settings
from ..db.database import get_db, init_db
from ..engine.pricing_engine import PricingEngine
from ..errors import (
    ConfigurationError,
    InvalidBulkRequestError,
    PriceListNotFoundError,
    PriceListValidationError,
    PricingError,
    ProductNotFoundError,
    RevisionConflictError,
    RevisionNotFoundError,
    TransactionFailedError,
)
from .price_lists_api import TraceStepModel, router as price_lists_router
from .revisions_api import router as revisions_router

settings = get_settings()

# Configure logging
logging.basicConfig(level=settings.log_level, format=settings.log_format)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("Database ready")
    yield


app = FastAPI(
    title="Kiosk Pricing API",
    description="Price list resolution and reversible bulk price revisions",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(price_lists_router)
app.include_router(revisions_router)


def status_for(exc: PricingError) -> int:
    """HTTP status for a domain error."""
    if isinstance(exc, (PriceListNotFoundError, ProductNotFoundError, RevisionNotFoundError)):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, RevisionConflictError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, (InvalidBulkRequestError, ConfigurationError)):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, TransactionFailedError):
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status.HTTP_400_BAD_REQUEST


@app.exception_handler(PricingError)
async def pricing_error_handler(request: Request, exc: PricingError):
    code = status_for(exc)
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected (%d): %s", request.method, request.url.path, code, exc)

    content = {"detail": str(exc), "error_type": type(exc).__name__}
    if isinstance(exc, PriceListValidationError):
        content["errors"] = exc.errors
    return JSONResponse(status_code=code, content=content)


class QuoteRequest(BaseModel):
    product_ids: list[str]
    at: Optional[datetime] = None


class QuoteLine(BaseModel):
    product_id: str
    base_price: Decimal
    unit_price: Decimal
    source: str
    price_list_id: Optional[str] = None
    price_list_name: Optional[str] = None
    warnings: list[str]
    trace: list[TraceStepModel]


@app.get("/")
def root():
    return {"status": "online", "message": "Kiosk Pricing API Active", "version": __version__}


@app.post("/quote", response_model=list[QuoteLine])
def quote(
    req: QuoteRequest,
    db: Session = Depends(get_db),
    app_settings: Settings = Depends(get_settings),
):
    """Unit prices the checkout should stamp on each line."""
    quotes = PricingEngine(db, app_settings).quote_many(req.product_ids, at=req.at)
    return [
        QuoteLine(
            product_id=q.product_id,
            base_price=q.base_price,
            unit_price=q.unit_price,
            source=q.source,
            price_list_id=q.price_list_id,
            price_list_name=q.price_list_name,
            warnings=q.warnings,
            trace=[TraceStepModel(step=t.step, description=t.description, value=t.value) for t in q.trace],
        )
        for q in quotes
    ]


@app.get("/system/status")
def get_status(db: Session = Depends(get_db), app_settings: Settings = Depends(get_settings)):
    resolution = PricingEngine(db, app_settings).resolve()
    return {
        "engine_active": True,
        "timezone": app_settings.timezone,
        "active_price_list": resolution.active_list.id if resolution.active_list else None,
        "resolved_at": resolution.at.isoformat(),
    }
