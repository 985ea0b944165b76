"""
Tabular views of previews and revisions for operators and debug output.
"""
import pandas as pd

from .bulk_revision_service import BulkPreview, PriceRevision

PREVIEW_COLUMNS = ['Product', 'Name', 'Current Price', 'New Price', 'Change', 'Checkout Price', 'Warning']
REVISION_COLUMNS = ['Product', 'Name', 'Previous Price', 'New Price', 'Previous Cost', 'New Cost']
HISTORY_COLUMNS = ['Revision', 'Date', 'Action', 'Description', 'User', 'Products', 'Revertible']


def preview_frame(preview: BulkPreview) -> pd.DataFrame:
    """One row per product the bulk change would touch."""
    rows = [
        {
            'Product': line.product_id,
            'Name': line.name,
            'Current Price': float(line.current_price),
            'New Price': float(line.new_price),
            'Change': float(line.new_price - line.current_price),
            'Checkout Price': float(line.checkout_price) if line.checkout_price is not None else None,
            'Warning': line.warning or '',
        }
        for line in preview.lines
    ]
    return pd.DataFrame(rows, columns=PREVIEW_COLUMNS)


def revision_frame(revision: PriceRevision) -> pd.DataFrame:
    """Before/after snapshot of a single revision."""
    rows = [
        {
            'Product': a.product_id,
            'Name': a.name,
            'Previous Price': float(a.previous_price),
            'New Price': float(a.new_price),
            'Previous Cost': float(a.previous_cost),
            'New Cost': float(a.new_cost),
        }
        for a in revision.affected_products
    ]
    return pd.DataFrame(rows, columns=REVISION_COLUMNS)


def history_frame(revisions: list[PriceRevision]) -> pd.DataFrame:
    rows = [
        {
            'Revision': r.id,
            'Date': r.created_at,
            'Action': r.action_type,
            'Description': r.description,
            'User': r.user_name,
            'Products': len(r.affected_products),
            'Revertible': r.revertible,
        }
        for r in revisions
    ]
    return pd.DataFrame(rows, columns=HISTORY_COLUMNS)
