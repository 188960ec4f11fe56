# backend/courtside/core/exceptions.py
"""
Domain-specific exceptions for the Courtside booking core.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from typing import Any, Dict, List, NoReturn, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
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
        """Convert to an HTTPException carrying the standard error envelope."""
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class UnauthorizedException(DomainException):
    """Raised when the caller is not authenticated."""

    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenException(DomainException):
    """Raised when the actor may not perform the mutation."""

    status_code = status.HTTP_403_FORBIDDEN


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific business exceptions


class SlotConflictException(ConflictException):
    """Raised when a hold collides with another active booking."""

    def __init__(
        self,
        conflicts: List[Dict[str, Any]],
        message: Optional[str] = None,
    ) -> None:
        self.conflicts = conflicts
        super().__init__(
            message=message or "The requested slots are already booked or held",
            code="SLOT_CONFLICT",
            details={"conflicts": conflicts},
        )


class InvalidStateTransitionException(BusinessRuleException):
    """Raised when the booking state machine forbids the requested action."""

    def __init__(
        self,
        action: str,
        current_status: str,
        message: Optional[str] = None,
        booking_id: Optional[str] = None,
    ) -> None:
        self.action = action
        self.current_status = current_status
        details: Dict[str, Any] = {"action": action, "current_status": current_status}
        if booking_id:
            details["booking_id"] = booking_id
        super().__init__(
            message=message or f"Cannot {action} a booking that is {current_status}",
            code="INVALID_STATE_TRANSITION",
            details=details,
        )


class GatewayException(DomainException):
    """Raised when the payment gateway returns an error."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        message: str,
        *,
        gateway_status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged = dict(details or {})
        if gateway_status is not None:
            merged["gateway_status"] = gateway_status
        super().__init__(message=message, code="GATEWAY_ERROR", details=merged)


class GatewayUnreachableException(GatewayException):
    """Raised when the payment gateway cannot be reached or timed out."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = "Payment gateway is unreachable") -> None:
        super().__init__(message)
        self.code = "GATEWAY_UNREACHABLE"


class SignatureInvalidException(DomainException):
    """Raised when a webhook signature fails verification."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "Invalid webhook signature") -> None:
        super().__init__(message=message, code="SIGNATURE_INVALID")


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    Used when data access operations fail, such as database
    connection issues, query failures, or constraint violations.
    """


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Re-raise a domain exception as the HTTPException the route returns."""
    raise exc.to_http_exception()
