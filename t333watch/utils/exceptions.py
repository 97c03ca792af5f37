"""
Error taxonomy and HTTP exception factories.

Services raise the domain errors below; each carries the HTTP status it maps
to, and ``main.create_app`` turns them into ``{"error": ...}`` responses.
Route code that needs to fail directly uses the ``APIExceptions`` factory.

Usage:
    from t333watch.utils.exceptions import APIExceptions, NotFoundError

    raise NotFoundError("Pack not found")
    raise APIExceptions.unauthorized()
"""

from typing import Any

from fastapi import HTTPException


class T333Error(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_response(self) -> dict[str, Any]:
        return {"error": self.message, **self.extra}


class AuthenticationError(T333Error):
    status_code = 401


class AuthorizationError(T333Error):
    status_code = 403


class PremiumRequiredError(AuthorizationError):
    def __init__(self, message: str = "Premium subscription required", upgrade_url: str = "/pricing"):
        super().__init__(message, code="PREMIUM_REQUIRED", upgradeUrl=upgrade_url)


class ValidationError(T333Error):
    status_code = 400


class NotFoundError(T333Error):
    status_code = 404


class WebhookSignatureError(T333Error):
    status_code = 400


class ProviderError(T333Error):
    """A payment or identity provider rejected the request; its message is passed through."""

    status_code = 400

    def __init__(self, message: str, status_code: int | None = None, **extra: Any):
        super().__init__(message, **extra)
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(T333Error):
    status_code = 500


class APIExceptions:
    """Factory class for creating standardized HTTP exceptions."""

    @staticmethod
    def unauthorized(detail: str = "Authentication required") -> HTTPException:
        """401 Unauthorized - Authentication failed."""
        return HTTPException(status_code=401, detail=detail)

    @staticmethod
    def forbidden(detail: str = "Access forbidden") -> HTTPException:
        """403 Forbidden - User doesn't have permission."""
        return HTTPException(status_code=403, detail=detail)

    @staticmethod
    def not_found(resource: str = "Resource", resource_id: Any | None = None) -> HTTPException:
        """
        404 Not Found - Resource doesn't exist.

        Args:
            resource: Type of resource (e.g., "Pack", "Stream", "User")
            resource_id: Optional ID of the resource
        """
        detail = f"{resource} not found"
        if resource_id is not None:
            detail += f": {resource_id}"
        return HTTPException(status_code=404, detail=detail)

    @staticmethod
    def bad_request(detail: str = "Bad request") -> HTTPException:
        """400 Bad Request - Invalid request parameters."""
        return HTTPException(status_code=400, detail=detail)

    @staticmethod
    def internal_error(operation: str = "operation") -> HTTPException:
        """500 Internal Server Error - the detail never carries exception text."""
        return HTTPException(status_code=500, detail=f"Failed to {operation}")
