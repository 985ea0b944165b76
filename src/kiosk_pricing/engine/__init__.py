"""Engine subpackage - core pricing logic and resolution."""
from .models import PriceList, PriceQuote, Product, ScheduleRule
from .price_calculator import calculate_price, quote_price

__all__ = ['PriceList', 'PriceQuote', 'Product', 'ScheduleRule', 'calculate_price', 'quote_price']
