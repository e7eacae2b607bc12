from decimal import Decimal
from fastapi import Request, status
from fastapi.responses import JSONResponse
from typing import Any, Dict, Optional
import logging

logger = logging.getLogger(__name__)

class CreatorHubError(Exception):
    """Base exception for the CreatorHub ledger."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

        # Log the exception for monitoring
        logger.error(f"{self.__class__.__name__}: {message}", extra={"details": self.details})

class ValidationFailedError(CreatorHubError):
    """Raised when a request is missing fields or carries malformed ones."""

    def __init__(self, message: str, field: str = None):
        super().__init__(message, {"field": field} if field else None)

class NotFoundError(CreatorHubError):
    """Raised when an account, product, coupon or project does not exist."""

    def __init__(self, resource: str, message: str = None):
        super().__init__(message or f"{resource} not found", {"resource": resource})

class InsufficientCreditsError(CreatorHubError):
    """Raised when user has insufficient credits for operation."""

    def __init__(self, required: Decimal, available: Decimal, user_id: str = None):
        message = f"Insufficient credits. Required: {required}, Available: {available}"
        details = {
            "required_credits": str(required),
            "available_credits": str(available),
            "user_id": user_id
        }
        super().__init__(message, details)

class AuthenticationError(CreatorHubError):
    """Raised when authentication fails."""

    def __init__(self, reason: str = "Authentication failed"):
        super().__init__(reason, {"auth_failure_reason": reason})

class TokenExpiredError(AuthenticationError):
    """Raised when JWT token has expired."""

    def __init__(self):
        super().__init__("Authentication token has expired")

class InvalidTokenError(AuthenticationError):
    """Raised when JWT token is invalid."""

    def __init__(self, reason: str = "Invalid token"):
        super().__init__(f"Invalid authentication token: {reason}")

class AuthorizationError(CreatorHubError):
    """Raised when an authenticated caller lacks the required role."""

    def __init__(self, reason: str = "Not allowed"):
        super().__init__(reason)

class WebhookSecretError(AuthorizationError):
    """Raised when a payment webhook carries the wrong shared secret."""

    def __init__(self, provider: str = "thrivecart"):
        super().__init__("Invalid secret")
        self.details = {"provider": provider}

class ProjectAccessDenied(AuthorizationError):
    """Raised when the account's tier does not unlock a project."""

    def __init__(self, slug: str, reason: str):
        super().__init__(reason)
        self.details = {"project": slug}

class CouponExpiredError(CreatorHubError):
    def __init__(self, code: str):
        super().__init__("This coupon has expired", {"coupon_code": code})

class CouponExhaustedError(CreatorHubError):
    def __init__(self, code: str):
        super().__init__("This coupon has reached its maximum uses", {"coupon_code": code})

class UnsupportedCouponError(CreatorHubError):
    def __init__(self, code: str, coupon_type: str):
        super().__init__(
            "Discount coupons are applied at checkout",
            {"coupon_code": code, "coupon_type": coupon_type},
        )

class ConfigurationError(CreatorHubError):
    """Raised when application configuration is invalid."""

    def __init__(self, setting: str, reason: str):
        message = f"Configuration error for '{setting}': {reason}"
        details = {"setting": setting, "reason": reason}
        super().__init__(message, details)

class ExternalServiceError(CreatorHubError):
    """Raised when external service calls fail."""

    def __init__(self, service: str, error: str, status_code: int = None):
        message = f"External service '{service}' error: {error}"
        details = {
            "service": service,
            "error": error,
            "status_code": status_code
        }
        super().__init__(message, details)

# Exception to HTTP status code mapping, most specific first
STATUS_CODE_MAPPING = (
    (InsufficientCreditsError, status.HTTP_402_PAYMENT_REQUIRED),
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (ValidationFailedError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (CouponExhaustedError, status.HTTP_409_CONFLICT),
    (CouponExpiredError, status.HTTP_410_GONE),
    (UnsupportedCouponError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (ExternalServiceError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)

def status_code_for(exc: CreatorHubError) -> int:
    for exc_type, code in STATUS_CODE_MAPPING:
        if isinstance(exc, exc_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR

def error_body(exc: CreatorHubError) -> Dict[str, Any]:
    return {
        "success": False,
        "error": exc.message,
        "code": exc.__class__.__name__,
        **exc.details
    }

async def creatorhub_exception_handler(request: Request, exc: CreatorHubError) -> JSONResponse:
    return JSONResponse(status_code=status_code_for(exc), content=error_body(exc))
