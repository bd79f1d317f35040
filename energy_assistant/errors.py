"""Error taxonomy for the energy query pipeline.

Provider failures are sanitized before they reach callers; validation and
authorization errors carry enough structure for the HTTP layer to render a
field-level 4xx response.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class ProviderError(Exception):
    """Base class for failures raised by an LLM provider adapter."""

    def __init__(self, message: str, provider: Optional[str] = None) -> None:
        super().__init__(message)
        self.provider = provider


class ModelNotFoundError(ProviderError):
    """The backend reported that the requested model does not exist."""

    def __init__(self, provider: Optional[str] = None) -> None:
        super().__init__("Model not available", provider)


class TransientProviderError(ProviderError):
    """Any other backend failure; raw diagnostics are kept out of the message."""

    def __init__(self, provider: Optional[str] = None) -> None:
        super().__init__("Service temporarily unavailable", provider)


class ConfigurationError(Exception):
    """A provider or service setting is missing or malformed."""


class QueryValidationError(ValueError):
    """An aggregation query request failed validation.

    Attributes
    ----------
    errors: list of dict
        ``{"field": ..., "message": ...}`` entries, one per offending field.
    """

    def __init__(
        self, message: str, errors: Optional[List[Dict[str, Any]]] = None
    ) -> None:
        super().__init__(message)
        self.errors: List[Dict[str, Any]] = errors or []


class AuthorizationMismatchError(PermissionError):
    """A direct query referenced a device the principal does not own."""
