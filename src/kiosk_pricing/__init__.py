"""
Kiosk Pricing Package

Price resolution and bulk price revision for a retail point of sale.
Resolves the active price list for an instant, prices products against it,
and applies reversible, audited bulk price changes.
"""

__version__ = "1.0.0"
