"""
FieldOps decision engine: dynamic pricing, engineer allocation and the
booking lifecycle for field-service compliance jobs.
"""

__version__ = "1.0.0"
