"""
Price List Service - CRUD operations for price lists.
Validates lists at edit time so that checkout never has to.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.tables import PriceListRow, new_id
from ..engine.models import PriceList, Resolution, ROUNDING_RULES, ScheduleRule
from ..errors import PriceListNotFoundError, PriceListValidationError, TransactionFailedError
from ..policy.price_list_resolver import resolve_with_trace

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    'name', 'adjustment_percentage', 'rounding_rule', 'is_active', 'schedule',
    'excluded_category_ids', 'excluded_product_ids', 'priority',
)


@dataclass
class ValidationResult:
    """Result of price list validation."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _windows_overlap(a: ScheduleRule, b: ScheduleRule) -> bool:
    try:
        a_start, a_end = a.parse_window()
        b_start, b_end = b.parse_window()
    except (TypeError, ValueError):
        return False
    return a.day == b.day and a_start <= b_end and b_start <= a_end


def schedules_overlap(a: PriceList, b: PriceList) -> bool:
    """True when both lists can be live at the same instant."""
    if not a.schedule or not b.schedule:
        return True
    return any(_windows_overlap(ra, rb) for ra in a.schedule for rb in b.schedule)


class PriceListService:
    """Service for managing price lists."""

    def __init__(self, db: Session):
        self.db = db

    def _query(self):
        # Definition order is explicit: creation time, then id
        return self.db.query(PriceListRow).order_by(PriceListRow.created_at, PriceListRow.id)

    def list_price_lists(self, include_inactive: bool = True) -> list[PriceList]:
        """List all price lists in definition order."""
        query = self._query()
        if not include_inactive:
            query = query.filter(PriceListRow.is_active.is_(True))
        return [row.to_domain() for row in query.all()]

    def get_price_list(self, price_list_id: str) -> Optional[PriceList]:
        row = self.db.get(PriceListRow, price_list_id)
        return row.to_domain() if row else None

    def resolve(self, at: datetime) -> Resolution:
        """Resolve the list active at `at` from the stored definitions."""
        return resolve_with_trace(self.list_price_lists(), at)

    def create_price_list(self, price_list: PriceList) -> PriceList:
        """Create a new price list after validating it."""
        validation = self.validate_price_list(price_list)
        if not validation.valid:
            raise PriceListValidationError(validation.errors)

        row = PriceListRow(id=price_list.id or new_id())
        self._copy_to_row(price_list, row)
        if price_list.created_at is not None:
            row.created_at = price_list.created_at
        self.db.add(row)
        self._commit(f"create price list '{price_list.name}'")
        self.db.refresh(row)
        logger.info("Created price list %s (%s)", row.id, row.name)
        return row.to_domain()

    def update_price_list(self, price_list_id: str, updates: dict) -> PriceList:
        """Update an existing price list; only keys present in `updates` change."""
        row = self.db.get(PriceListRow, price_list_id)
        if row is None:
            raise PriceListNotFoundError(price_list_id)

        current = row.to_domain()
        for key, value in updates.items():
            # null means "leave as is", never "clear"
            if key not in EDITABLE_FIELDS or value is None:
                continue
            if key == 'schedule':
                value = [r if isinstance(r, ScheduleRule) else ScheduleRule.from_dict(r) for r in (value or [])]
            setattr(current, key, value)
        # Re-run normalisation of percentages and exclusion sets
        try:
            current.__post_init__()
        except InvalidOperation:
            raise PriceListValidationError(["Adjustment percentage must be a number"])

        validation = self.validate_price_list(current)
        if not validation.valid:
            raise PriceListValidationError(validation.errors)

        self._copy_to_row(current, row)
        self._commit(f"update price list '{price_list_id}'")
        self.db.refresh(row)
        logger.info("Updated price list %s", price_list_id)
        return row.to_domain()

    def delete_price_list(self, price_list_id: str) -> bool:
        row = self.db.get(PriceListRow, price_list_id)
        if row is None:
            raise PriceListNotFoundError(price_list_id)
        self.db.delete(row)
        self._commit(f"delete price list '{price_list_id}'")
        logger.info("Deleted price list %s", price_list_id)
        return True

    def validate_price_list(self, price_list: PriceList) -> ValidationResult:
        """Validate a price list before saving."""
        result = ValidationResult(valid=True)

        if not price_list.name or not str(price_list.name).strip():
            result.errors.append("Name is required")

        if price_list.rounding_rule not in ROUNDING_RULES:
            result.errors.append(
                f"Rounding rule must be one of {', '.join(ROUNDING_RULES)}, got '{price_list.rounding_rule}'"
            )

        try:
            pct = Decimal(str(price_list.adjustment_percentage))
        except InvalidOperation:
            result.errors.append("Adjustment percentage must be a number")
        else:
            if pct < -100:
                result.errors.append("Adjustment percentage below -100% would produce negative prices")
            elif pct == 0:
                result.warnings.append("Adjustment is 0%: the list can be active but will not change prices")

        for index, rule in enumerate(price_list.schedule, start=1):
            try:
                rule.parse_window()
            except (TypeError, ValueError) as e:
                result.errors.append(f"Schedule rule {index}: {e}")

        if not result.errors:
            result.warnings.extend(self._check_conflicts(price_list))

        result.valid = not result.errors
        return result

    def _check_conflicts(self, price_list: PriceList) -> list[str]:
        """Warn about active lists at the same priority whose windows overlap."""
        warnings = []
        if not price_list.is_active:
            return warnings
        for existing in self.list_price_lists(include_inactive=False):
            if existing.id == price_list.id or existing.priority != price_list.priority:
                continue
            if schedules_overlap(existing, price_list):
                warnings.append(
                    f"Overlaps with '{existing.name}' at priority {existing.priority}; "
                    "the earlier-defined list wins"
                )
        return warnings

    def get_stats(self, at: Optional[datetime] = None) -> dict:
        """Get statistics about price lists."""
        lists = self.list_price_lists()
        active = [pl for pl in lists if pl.is_active]
        stats = {
            'total': len(lists),
            'active': len(active),
            'inactive': len(lists) - len(active),
            'scheduled': len([pl for pl in lists if pl.schedule]),
            'always_on': len([pl for pl in active if not pl.schedule]),
        }
        if at is not None:
            resolved = resolve_with_trace(lists, at).active_list
            stats['resolved_id'] = resolved.id if resolved else None
        return stats

    @staticmethod
    def _copy_to_row(price_list: PriceList, row: PriceListRow):
        row.name = str(price_list.name).strip()
        row.adjustment_percentage = price_list.adjustment_percentage
        row.rounding_rule = price_list.rounding_rule
        row.is_active = bool(price_list.is_active)
        row.schedule = [r.to_dict() for r in price_list.schedule] or None
        row.excluded_category_ids = sorted(price_list.excluded_category_ids)
        row.excluded_product_ids = sorted(price_list.excluded_product_ids)
        row.priority = int(price_list.priority or 0)

    def _commit(self, action: str):
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to %s", action, exc_info=True)
            raise TransactionFailedError(f"Failed to {action}") from e
