"""
Domain errors raised by the service layer.

Routes translate these into HTTP responses; services never import FastAPI.
"""


class IRefairError(Exception):
    """Base class for service errors."""


class NotFoundError(IRefairError):
    """The requested record does not exist."""


class ConflictError(IRefairError):
    """The record exists but is in a state that forbids the operation."""


class ValidationError(IRefairError):
    """Input was rejected by a service-level rule."""
