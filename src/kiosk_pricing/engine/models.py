"""
Data models for the pricing engine.

Uses dataclasses for structured, type-safe data representation.
Money is carried as Decimal end to end so that a bulk revision and its
revert round-trip exactly.
"""
from dataclasses import dataclass, field
from datetime import datetime, time
from decimal import Decimal
from typing import Optional


ROUNDING_RULES = ('none', 'nearest_10', 'nearest_50', 'nearest_100')

ROUNDING_STEPS = {
    'nearest_10': Decimal(10),
    'nearest_50': Decimal(50),
    'nearest_100': Decimal(100),
}

# 0 = Sunday, matching the calendar convention used by the operator UI
DAY_NAMES = ('Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday')


@dataclass
class TraceStep:
    """A single step in the pricing resolution trace."""
    step: str
    description: str
    value: Optional[str] = None


@dataclass(frozen=True)
class ScheduleRule:
    """A weekday plus an HH:mm window during which a price list applies."""
    day: int
    start: str
    end: str

    def parse_window(self) -> tuple[time, time]:
        """
        Parse the rule's time strings.

        Raises ValueError when the day or either time is malformed, or when
        the window runs backwards (rules never span midnight).
        """
        if not isinstance(self.day, int) or isinstance(self.day, bool) or not 0 <= self.day <= 6:
            raise ValueError(f"day must be an integer 0..6, got {self.day!r}")
        start = datetime.strptime(str(self.start).strip(), '%H:%M').time()
        end = datetime.strptime(str(self.end).strip(), '%H:%M').time()
        if start > end:
            raise ValueError(f"window {self.start}-{self.end} runs past midnight; split it into two rules")
        return start, end

    def label(self) -> str:
        day = DAY_NAMES[self.day] if isinstance(self.day, int) and 0 <= self.day <= 6 else f"day {self.day}"
        return f"{day} {self.start}-{self.end}"

    def to_dict(self) -> dict:
        return {'day': self.day, 'start': self.start, 'end': self.end}

    @classmethod
    def from_dict(cls, data: dict) -> 'ScheduleRule':
        return cls(day=data.get('day'), start=data.get('start', ''), end=data.get('end', ''))


@dataclass
class PriceList:
    """A named, schedulable discount/surcharge policy."""
    id: str
    name: str
    adjustment_percentage: Decimal = Decimal(0)
    rounding_rule: str = 'none'
    is_active: bool = True
    schedule: list[ScheduleRule] = field(default_factory=list)
    excluded_category_ids: frozenset[str] = frozenset()
    excluded_product_ids: frozenset[str] = frozenset()
    priority: int = 0
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.adjustment_percentage = Decimal(str(self.adjustment_percentage))
        self.excluded_category_ids = frozenset(str(c) for c in self.excluded_category_ids if c)
        self.excluded_product_ids = frozenset(str(p) for p in self.excluded_product_ids if p)

    @property
    def is_scheduled(self) -> bool:
        return bool(self.schedule)

    def excludes(self, product: 'Product') -> bool:
        """True when the product or its category is exempt from this list."""
        if product.category_id is not None and product.category_id in self.excluded_category_ids:
            return True
        return product.id in self.excluded_product_ids


@dataclass
class Product:
    """A sellable item. Only the fields pricing depends on are modelled."""
    id: str
    price: Decimal
    cost: Decimal = Decimal(0)
    stock: int = 0
    name: str = ''
    category_id: Optional[str] = None
    supplier_id: Optional[str] = None

    def __post_init__(self):
        self.price = Decimal(str(self.price))
        self.cost = Decimal(str(self.cost))
        # Empty strings are treated as "no category/supplier", never as an id
        self.category_id = str(self.category_id) if self.category_id else None
        self.supplier_id = str(self.supplier_id) if self.supplier_id else None


@dataclass
class PriceQuote:
    """Result of pricing one product against the active price list."""
    product_id: str
    base_price: Decimal
    unit_price: Decimal
    price_list_id: Optional[str] = None
    price_list_name: Optional[str] = None
    source: str = "Base"  # "Base", "Excluded" or "PriceList"
    rules_applied: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    trace: list[TraceStep] = field(default_factory=list)

    def add_trace(self, step: str, description: str, value: str = None):
        """Add a step to the trace for this quote."""
        self.trace.append(TraceStep(step=step, description=description, value=value))

    def add_warning(self, warning: str):
        self.warnings.append(warning)

    def get_trace_text(self) -> str:
        """Get human-readable trace as formatted text."""
        lines = []
        for t in self.trace:
            if t.value:
                lines.append(f"→ {t.step}: {t.description} = {t.value}")
            else:
                lines.append(f"→ {t.step}: {t.description}")
        return "\n".join(lines)


@dataclass
class Resolution:
    """The list picked by the resolver plus the trace of how it got there."""
    active_list: Optional[PriceList]
    at: datetime
    trace: list[TraceStep] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def add_trace(self, step: str, description: str, value: str = None):
        self.trace.append(TraceStep(step=step, description=description, value=value))

    def get_trace_text(self) -> str:
        lines = []
        for t in self.trace:
            if t.value:
                lines.append(f"• {t.step}: {t.description} = {t.value}")
            else:
                lines.append(f"• {t.step}: {t.description}")
        return "\n".join(lines)
