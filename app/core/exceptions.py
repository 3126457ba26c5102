"""
Application exceptions.

Every error carries a machine-readable code and a human message in
``detail`` so the frontend can show it as a toast.
"""
from typing import Optional

from fastapi import HTTPException, status


class AppException(HTTPException):
    """Base for all application errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "ERROR"
    message: str = "Something went wrong."

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None):
        self.message = message or self.message
        self.code = code or self.code
        super().__init__(
            status_code=self.status_code,
            detail={"code": self.code, "message": self.message},
        )

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class NotAuthenticated(AppException):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "NOT_AUTHENTICATED"
    message = "Authentication required."


class SessionExpired(AppException):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "SESSION_EXPIRED"
    message = "Session expired. Please log in again."


class Forbidden(AppException):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"
    message = "You do not have permission to perform this action."


class NotFound(AppException):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource"):
        super().__init__(message=f"{resource} not found.")


class ValidationError(AppException):
    """Empty or malformed input, rejected before any write."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"
    message = "Invalid input."


class UploadError(AppException):
    """File rejected before upload, or the storage call failed."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "UPLOAD_ERROR"
    message = "Failed to upload file."

    def __init__(self, message: Optional[str] = None, file_name: Optional[str] = None):
        self.file_name = file_name
        super().__init__(message=message)


class PersistenceError(AppException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "SERVICE_ERROR"
    message = "Failed to save changes. Please try again."


class SubscriptionError(AppException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "SUBSCRIPTION_ERROR"
    message = "Lost connection to live updates."
