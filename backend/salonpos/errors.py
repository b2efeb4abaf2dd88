# Overview: Billing and inventory error taxonomy shared by services and routes.

from __future__ import annotations


class BillingError(Exception):
    """Base for every domain error raised by the billing engine."""

    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "type": type(self).__name__,
            "retryable": self.retryable,
            "details": self.details,
        }


class FinalizeError(BillingError):
    """Base for errors that abort finalize_sale. Nothing is committed."""


class ValidationError(FinalizeError, ValueError):
    """400-level input problem (missing client name, short cash, ...)."""


class NotFoundError(BillingError, LookupError):
    """Referenced record does not exist."""


class StockError(FinalizeError):
    """Stock cannot satisfy the requested quantity."""


class InsufficientStockError(StockError):
    def __init__(
        self,
        *,
        branch_id: str,
        product_id: str,
        requested: int,
        available: int,
        message: str | None = None,
    ):
        shortfall = max(0, requested - available)
        super().__init__(
            message or f"Insufficient stock for product {product_id}. Only {available} units available.",
            details={
                "branch_id": branch_id,
                "product_id": product_id,
                "requested": requested,
                "available": available,
                "shortfall": shortfall,
            },
        )
        self.branch_id = branch_id
        self.product_id = product_id
        self.requested = requested
        self.available = available
        self.shortfall = shortfall


# Promotion error codes, checked in this order by validate_promotion_code
PROMO_NOT_FOUND = "NOT_FOUND"
PROMO_INACTIVE = "INACTIVE"
PROMO_EXPIRED = "EXPIRED"
PROMO_BRANCH_INELIGIBLE = "BRANCH_INELIGIBLE"
PROMO_CLIENT_INELIGIBLE = "CLIENT_INELIGIBLE"
PROMO_USAGE_EXCEEDED = "USAGE_EXCEEDED"


class PromotionError(BillingError):
    """Promotion cannot be applied. Non-fatal: the sale proceeds without it."""

    def __init__(self, code: str, message: str, details: dict | None = None):
        super().__init__(message, details={"code": code, **(details or {})})
        self.code = code


class LoyaltyError(FinalizeError):
    """Loyalty redemption cannot be honoured as requested."""


class InsufficientPointsError(LoyaltyError):
    def __init__(self, *, requested: int, available: int):
        super().__init__(
            f"Insufficient loyalty points. Available: {available}, Required: {requested}",
            details={"requested": requested, "available": available},
        )
        self.requested = requested
        self.available = available


class RedemptionExceedsTotalError(LoyaltyError):
    def __init__(self, *, requested: int, total):
        super().__init__(
            f"Cannot redeem {requested} points against a total of {total}",
            details={"requested": requested, "total": str(total)},
        )
        self.requested = requested
        self.total = total


class ConcurrencyConflict(FinalizeError):
    """Another writer changed the data this operation relied on. Retry after re-previewing."""

    retryable = True


class FatalPersistenceError(FinalizeError):
    """The underlying transaction failed; every partial write was rolled back."""


def http_status(exc: BillingError) -> int:
    """Status code the HTTP adapter returns for a domain error."""
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ConcurrencyConflict):
        return 409
    if isinstance(exc, FatalPersistenceError):
        return 500
    return 400
