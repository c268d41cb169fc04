"""
API request and response models for the auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models only bound sizes and strip whitespace. Email shape and password
strength are business rules and live in auth/validation.py, so every caller
of the services gets them -- not just HTTP clients.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import AuthResult, UserProfile

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    No str_strip_whitespace here: whitespace is part of a password. The email
    is stripped by auth.validation.normalize_email.
    """

    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=255)


class LoginRequest(RegisterRequest):
    """Request body for POST /api/v1/auth/login."""


class RefreshRequest(BaseModel):
    """Optional body for POST /refresh and /logout. The cookie is used when absent."""

    refresh_token: Optional[str] = Field(default=None, max_length=512)


class ForgotPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/forgot."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=320)


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/reset."""

    token: str = Field(min_length=1, max_length=512)
    new_password: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public profile of a user. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str

    @classmethod
    def from_profile(cls, profile: UserProfile) -> "UserResponse":
        return cls(id=profile.id, email=profile.email)


class AuthResponse(BaseModel):
    """Response for register, login and refresh.

    refresh_token is returned in the body AND set as an httpOnly cookie.
    Browser clients can ignore the body field; API clients can ignore the cookie.
    """

    model_config = ConfigDict(frozen=True)

    user: UserResponse
    access_token: str
    refresh_token: str
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password
    expires_in: int

    @classmethod
    def from_result(cls, result: AuthResult) -> "AuthResponse":
        """Factory Method -- the domain-to-transport mapping lives beside the model."""
        return cls(
            user=UserResponse.from_profile(result.user),
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            expires_in=result.expires_in,
        )


class MessageResponse(BaseModel):
    """Generic confirmation. Never varies with whether an account exists."""

    model_config = ConfigDict(frozen=True)

    message: str


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
    components: dict[str, str]
