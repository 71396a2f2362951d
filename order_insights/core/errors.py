from typing import Any, Dict, List, Optional


class OrderInsightsError(Exception):
    """Base class for every error the analytics core raises on purpose."""

    error_type = "internal"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "error_type": self.error_type}


class QueryValidationError(OrderInsightsError):
    """Malformed params or dates. Safe to show the caller, field by field."""

    error_type = "validation"

    def __init__(self, message: str, details: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.details = details or []

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.details:
            payload["details"] = self.details
        return payload


class UnknownFunctionError(QueryValidationError):
    error_type = "unknown_function"

    def __init__(self, name: str):
        super().__init__(f"Unknown function: {name}")
        self.name = name


class SanitizationRejected(OrderInsightsError):
    """Ad-hoc query blocked. The query was never executed."""

    error_type = "sanitization"


class DataStoreError(OrderInsightsError):
    """
    Query execution failed. The message is generic on purpose; the
    original exception is logged where it is raised.
    """

    error_type = "data_store"

    def __init__(self, message: str = "Failed to query order data"):
        super().__init__(message)


class InsufficientDataError(OrderInsightsError):
    error_type = "insufficient_data"


class ProviderUnavailable(OrderInsightsError):
    error_type = "provider_unavailable"

    def __init__(self, message: str, rate_limited: bool = False):
        super().__init__(message)
        self.rate_limited = rate_limited
