"""
Exceptions raised by the budget aggregator.
"""
from typing import Any, Dict, Optional


class AggregatorError(Exception):
    """Base exception for all aggregation errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class AccessError(AggregatorError):
    """Raised when a spreadsheet is unreachable or permission is denied."""
    pass


class NotFoundError(AggregatorError):
    """Raised when a spreadsheet or sheet does not exist."""
    pass


class ClassificationError(AggregatorError):
    """Raised when the column mapping from Claude cannot be parsed."""
    pass


class NormalizationError(AggregatorError):
    """Raised when the category mapping from Claude cannot be parsed."""
    pass


class ConfigurationError(AggregatorError):
    """Raised when credentials or settings are missing."""
    pass
