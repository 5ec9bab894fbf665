"""
Domain exceptions for the booking core.

Services raise these; routes convert them with ``to_http_exception``.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class DomainError(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class BookingValidationError(DomainError):
    """Malformed reservation request. Nothing has been written."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="validation_error", details=details)


class PricingValidationError(DomainError):
    """Pricing input the engine refuses to compute."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="pricing_error", details=details)


class DatesUnavailableError(DomainError):
    """Requested window overlaps an active booking for the same machine."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str = "Selected dates are no longer available", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="dates_unavailable", details=details)


class BookingNotFoundError(DomainError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, booking_id: str) -> None:
        super().__init__(f"Booking {booking_id} not found", code="not_found", details={"booking_id": booking_id})


class PaymentGatewayError(DomainError):
    """The payment gateway rejected or failed a request we needed synchronously."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="payment_gateway_error", details=details)


class TransientProcessingError(DomainError):
    """
    A webhook could not be applied and nothing was committed.

    The route answers 5xx so the provider redelivers the event.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, event_id: Optional[str] = None) -> None:
        super().__init__(message, code="transient_failure", details={"event_id": event_id} if event_id else None)


class EmailDeliveryError(DomainError):
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str) -> None:
        super().__init__(message, code="email_delivery_failed")
