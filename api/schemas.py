"""Pydantic schemas for API request/response validation."""

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str


class CsrfTokenResponse(BaseModel):
    """Current CSRF token for the caller's session."""

    model_config = ConfigDict(populate_by_name=True)

    csrf_token: str = Field(alias="csrfToken")
    header_name: str = Field(alias="headerName")


class LoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1, max_length=1024)


class LoginResponse(BaseModel):
    """Successful login.

    ``csrf_token`` is the rotated token; the one fetched before login is no
    longer accepted.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    csrf_token: str = Field(alias="csrfToken")
    redirect_to: str = Field(alias="redirectTo")


class LogoutResponse(BaseModel):
    status: str = "logged_out"


class WebhookResponse(BaseModel):
    """Response for an accepted webhook."""

    received: bool = True
    vendor: str
    event_type: str | None = None


class ErrorCodeResponse(BaseModel):
    """Rejection carrying only a stable machine-readable code."""

    code: str
