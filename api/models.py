"""
API request and response models for kvauth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
User records themselves are plain dicts whose field names come from
ProviderConfig, so they travel as an open mapping rather than a fixed schema.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class UserResponse(BaseModel):
    """A user record with its password field removed, plus its role names.

    roles is None when role support is disabled for the provider.
    """

    model_config = ConfigDict(frozen=True)

    username: str
    details: dict[str, Any]
    roles: Optional[list[str]] = None
