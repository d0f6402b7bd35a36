"""
Custom exceptions for the Daily Outreach API.
Provides consistent error handling across the application.
"""
from fastapi import HTTPException, status


class OutreachException(Exception):
    """Base exception for Daily Outreach"""
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class NotFoundError(OutreachException):
    """Resource not found"""
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str = "Resource", resource_id: str = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        super().__init__(message)


class BatchExpiredError(OutreachException):
    """Batch link is past its expiry or was superseded"""
    status_code = status.HTTP_410_GONE

    def __init__(self, message: str = "This link has expired"):
        super().__init__(message)


class InvalidStateError(OutreachException):
    """Transition not allowed from the current state"""
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str = "Invalid state transition", current: str = None):
        if current:
            message = f"{message} (current status: '{current}')"
        super().__init__(message)


class ValidationError(OutreachException):
    """Validation failed"""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, message: str = "Validation failed", field: str = None):
        if field:
            message = f"Validation failed for field '{field}': {message}"
        super().__init__(message)


class NotificationError(OutreachException):
    """Notification email could not be delivered"""
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, recipient: str = None):
        message = "Notification email could not be delivered"
        if recipient:
            message = f"{message} to {recipient}"
        super().__init__(message)


# HTTP Exception helpers
def raise_unauthorized(message: str = "Could not validate credentials"):
    """Raise 401 HTTPException"""
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=message,
        headers={"WWW-Authenticate": "Bearer"},
    )


def raise_forbidden(message: str = "You don't have permission to access this resource"):
    """Raise 403 HTTPException"""
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=message)


def raise_validation_error(message: str = "Validation failed", field: str = None):
    """Raise 422 HTTPException"""
    err = ValidationError(message, field)
    raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=err.message)
