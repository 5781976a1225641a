"""
Checkout error taxonomy.

Every failure the checkout core reports to a caller is one of these.
Services raise them; the exception handler registered in ``bakery.main``
renders them as ``{"success": false, "error": {code, message, details}}``.
"""

from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse


class CheckoutError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 400
    code: str = "checkout_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(CheckoutError):
    status_code = 400
    code = "validation_error"


class NotFoundError(CheckoutError):
    status_code = 404
    code = "not_found"


class PermissionDeniedError(CheckoutError):
    status_code = 403
    code = "permission_denied"


class InsufficientStockError(CheckoutError):
    """A line item asks for more than the branch has available."""

    status_code = 409
    code = "insufficient_stock"

    def __init__(
        self,
        product_id,
        requested: int,
        available: int,
        product_name: Optional[str] = None,
        variant_id=None,
        branch_id=None,
    ):
        label = product_name or str(product_id)
        super().__init__(
            f"Insufficient stock for {label}: requested {requested}, available {available}",
            details={
                "product_id": str(product_id),
                "variant_id": str(variant_id) if variant_id else None,
                "product_name": product_name,
                "branch_id": str(branch_id) if branch_id else None,
                "requested": requested,
                "available": available,
            },
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class BranchUnavailableError(CheckoutError):
    """No sellable inventory record, or the branch itself is inactive."""

    status_code = 409
    code = "branch_unavailable"

    def __init__(self, message: str, branch_id=None, product_id=None, variant_id=None):
        super().__init__(
            message,
            details={
                "branch_id": str(branch_id) if branch_id else None,
                "product_id": str(product_id) if product_id else None,
                "variant_id": str(variant_id) if variant_id else None,
            },
        )


class NoBranchAvailableError(CheckoutError):
    status_code = 409
    code = "no_branch_available"


class PromoInvalidError(CheckoutError):
    """Promo code rejected. ``reason`` is a PromoRejectionReason value."""

    status_code = 422
    code = "promo_invalid"

    def __init__(self, reason: str, message: str):
        super().__init__(message, details={"reason": reason})
        self.reason = reason


class InvalidTransitionError(CheckoutError):
    status_code = 409
    code = "invalid_transition"


class ReservationExpiredError(CheckoutError):
    status_code = 409
    code = "reservation_expired"


class InternalCheckoutError(CheckoutError):
    status_code = 500
    code = "internal_error"


async def checkout_error_handler(request: Request, exc: CheckoutError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.to_dict()},
    )
