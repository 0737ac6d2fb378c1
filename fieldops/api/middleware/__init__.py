"""
Request-level error rendering for the API.
"""
from fieldops.api.middleware.error_handler import (
    OperationFailedException,
    register_exception_handlers,
)

__all__ = [
    "OperationFailedException",
    "register_exception_handlers",
]
