"""Request/response models for the HTTP surface.

Wire names are camelCase (``sessionId``, ``lastChecked``, ``hasMore``);
Python attributes are snake_case via aliases.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Simple health/readiness response model."""

    status: str


class FieldError(BaseModel):
    field: str
    message: str


class ErrorResponse(BaseModel):
    """Structured JSON error response for HTTP endpoints.

    Fields
    ------
    detail: str
        Human-readable explanation of the error.
    error_type: str
        Machine-readable error classification.
    errors: list[FieldError] | None
        Field-level validation failures, when applicable.
    """

    detail: str = Field(..., description="Human-readable error detail")
    error_type: str = Field(..., description="Machine-readable error type")
    errors: Optional[List[FieldError]] = Field(
        default=None, description="Field-level validation failures"
    )


class ChatRequest(BaseModel):
    """One chat turn."""

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., description="The user's message")
    session_id: Optional[str] = Field(
        None, alias="sessionId", description="Existing conversation to continue"
    )
    model: Optional[str] = Field(None, description="Model id to use")
    provider: Optional[str] = Field(None, description="Provider name to use")


class ChatResponse(BaseModel):
    """Answer for a chat turn; ``sessionId`` is set when a session was started."""

    model_config = ConfigDict(populate_by_name=True)

    response: str
    session_id: Optional[str] = Field(None, alias="sessionId")


class ModelInfoModel(BaseModel):
    id: str
    name: str
    size: Optional[str] = None
    description: Optional[str] = None
    capabilities: Optional[List[str]] = None


class ProviderStatusModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    status: str
    models: List[ModelInfoModel] = Field(default_factory=list)
    last_checked: str = Field(..., alias="lastChecked")
    error: Optional[str] = None


class ProvidersResponse(BaseModel):
    providers: List[ProviderStatusModel] = Field(default_factory=list)


class HistoryMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    role: str
    content: str
    created_at: Optional[str] = Field(None, alias="createdAt")


class HistoryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: List[HistoryMessage] = Field(default_factory=list)
    has_more: bool = Field(False, alias="hasMore")


class TelemetryQueryResponse(BaseModel):
    """Aggregation query result envelope."""

    model_config = ConfigDict(populate_by_name=True)

    data: List[Dict[str, Any]] = Field(default_factory=list)
    time_range: Dict[str, Optional[str]] = Field(..., alias="timeRange")
    aggregation: str
