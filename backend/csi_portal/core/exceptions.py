"""
Custom Exceptions for CSI Portal
================================

Services raise these instead of generic Exception so the API layer can map
them to status codes and a uniform error body.

Usage:
    from csi_portal.core.exceptions import NotFoundError, ConflictError

    if not survey:
        raise NotFoundError("Survey")

    if await repo.exists_code(code):
        raise ConflictError(f"Division with code '{code}' already exists")
"""

from typing import Optional, Any, Dict


class CSIPortalError(Exception):
    """Base exception for all CSI Portal errors"""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Any] = None
    ):
        self.message = message
        self.code = code
        self.details = details if details is not None else {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# ============================================
# Authentication & Authorization Errors
# ============================================

class AuthenticationError(CSIPortalError):
    """User authentication failed"""

    status_code = 401

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message, code="AUTH_FAILED")


class AuthorizationError(CSIPortalError):
    """User not authorized for this action"""

    status_code = 403

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message, code="NOT_AUTHORIZED")


class TokenExpiredError(AuthenticationError):
    """JWT token has expired"""

    def __init__(self):
        super().__init__("Token has expired")
        self.code = "TOKEN_EXPIRED"


class InvalidTokenError(AuthenticationError):
    """JWT token is invalid"""

    def __init__(self, message: str = "Invalid token"):
        super().__init__(message)
        self.code = "INVALID_TOKEN"


# ============================================
# Resource Errors
# ============================================

class NotFoundError(CSIPortalError):
    """Requested entity does not exist"""

    status_code = 404

    def __init__(self, resource: str, message: Optional[str] = None):
        super().__init__(
            message or f"{resource} not found",
            code="NOT_FOUND",
            details={"resource_type": resource}
        )


class ConflictError(CSIPortalError):
    """Duplicate key or state transition that is not allowed"""

    status_code = 409

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message, code="CONFLICT", details=details)


class ValidationError(CSIPortalError):
    """Input validation failed"""

    status_code = 400

    def __init__(self, message: str, details: Optional[Any] = None, field: Optional[str] = None):
        if details is None and field:
            details = {"field": field}
        super().__init__(message, code="VALIDATION_ERROR", details=details)


# ============================================
# External Service Errors
# ============================================

class ExternalServiceError(CSIPortalError):
    """An upstream system (SAP, LDAP, SMTP) failed"""

    status_code = 502

    def __init__(self, service: str, message: str):
        super().__init__(message, code=f"{service.upper()}_ERROR", details={"service": service})


# ============================================
# Helper function for API responses
# ============================================

def error_response(error: CSIPortalError) -> Dict[str, Any]:
    """Convert exception to API error response format"""
    return {
        "success": False,
        "error": error.to_dict()
    }
