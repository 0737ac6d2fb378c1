"""
API dependencies for FastAPI dependency injection.
"""
from typing import Any

from fastapi import Depends
from sqlalchemy.orm import Session

from fieldops.api.middleware.error_handler import OperationFailedException
from fieldops.lib.db import get_db as get_db_session
from fieldops.services.decision_engine import DecisionEngine, OperationResult


# Re-export get_db for convenience
get_db = get_db_session


def get_engine(db: Session = Depends(get_db)) -> DecisionEngine:
    """Decision engine bound to the request's database session."""
    return DecisionEngine(db)


def unwrap(result: OperationResult) -> Any:
    """
    Return a successful result's data, or raise so the error handler
    answers with the status mapped from its error_code.
    """
    if not result.success:
        raise OperationFailedException(result.error, result.error_code, result.details)
    return result.data
