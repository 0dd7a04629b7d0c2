# Overview: Error taxonomy surfaced by the fulfillment core.

"""
Every error carries a message, a details dict for the caller, and the
HTTP-equivalent status code routes respond with.

- ValidationError:        caller input is wrong; not retried
- InsufficientStock:      not enough sellable units; surfaced verbatim
- InsufficientFunds:      wallet balance short; surfaced verbatim
- NotFound:               unknown product/order/unit/wallet
- Conflict:               idempotency payload mismatch or forbidden transition
- TransientStorageError:  storage blip that outlived retries; safe to retry
"""

from __future__ import annotations


class FulfillmentError(Exception):
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class ValidationError(FulfillmentError):
    status_code = 400


class NotFound(FulfillmentError):
    status_code = 404


class Conflict(FulfillmentError):
    status_code = 409


class ReservationMismatch(Conflict):
    """Units are not RESERVED for the order that tries to sell them."""


class InsufficientStock(FulfillmentError):
    status_code = 409

    def __init__(self, product_id: int, requested: int, available: int, product_name: str | None = None):
        label = product_name or f"product {product_id}"
        super().__init__(
            f"Only {available} cards available for {label}, requested {requested}",
            details={
                "product_id": product_id,
                "requested": requested,
                "available": available,
            },
        )


class InsufficientFunds(FulfillmentError):
    status_code = 402

    def __init__(self, required, balance):
        shortfall = required - balance
        super().__init__(
            f"Insufficient wallet balance: short by {shortfall}",
            details={
                "required": str(required),
                "balance": str(balance),
                "shortfall": str(shortfall),
            },
        )


class TransientStorageError(FulfillmentError):
    status_code = 503

    def __init__(self, message: str = "Temporary storage failure, please try again", details: dict | None = None):
        super().__init__(message, details)
