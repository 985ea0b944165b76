"""
Exception hierarchy for pricing and bulk revision operations.

The API layer maps these onto HTTP status codes; library callers can catch
PricingError to handle every failure the core raises on purpose.
"""
from typing import Optional


class PricingError(Exception):
    """Base class for every error raised deliberately by the pricing core."""


# Configuration errors

class ConfigurationError(PricingError):
    """A price list is configured in a way that cannot produce a valid price."""


class NegativePriceError(ConfigurationError):
    def __init__(self, product_id: str, price_list_id: str, value):
        self.product_id = product_id
        self.price_list_id = price_list_id
        self.value = value
        super().__init__(
            f"Price list '{price_list_id}' produces a negative price ({value}) for product '{product_id}'"
        )


class InvalidScheduleError(ConfigurationError):
    """A schedule rule has a bad day, an unparseable time or a backwards window."""


class PriceListValidationError(ConfigurationError):
    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


class PriceListNotFoundError(PricingError):
    def __init__(self, price_list_id: str):
        self.price_list_id = price_list_id
        super().__init__(f"Price list '{price_list_id}' not found")


class ProductNotFoundError(PricingError):
    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product '{product_id}' not found")


# Bulk revision errors

class InvalidBulkRequestError(PricingError):
    """Rejected before any mutation: bad percentage, unknown target or nothing matched."""


class RevisionConflictError(PricingError):
    """A revert request that cannot be honoured."""

    def __init__(self, message: str, revision_id: Optional[str] = None):
        self.revision_id = revision_id
        super().__init__(message)


class RevisionNotFoundError(RevisionConflictError):
    def __init__(self, revision_id: str):
        super().__init__(f"Revision '{revision_id}' not found", revision_id)


class NotRevertibleError(RevisionConflictError):
    def __init__(self, revision_id: str, action_type: str):
        self.action_type = action_type
        super().__init__(
            f"Nothing to revert: revision '{revision_id}' is a {action_type} record",
            revision_id,
        )


class AlreadyRevertedError(RevisionConflictError):
    def __init__(self, revision_id: str, revert_id: Optional[str] = None):
        self.revert_id = revert_id
        message = f"Revision '{revision_id}' has already been reverted"
        if revert_id:
            message += f" by '{revert_id}'"
        super().__init__(message, revision_id)


class TransactionFailedError(PricingError):
    """The underlying store failed; the whole operation was rolled back."""


class ImmutableRecordError(PricingError):
    """Revision records are append-only; updates and deletes are refused."""
