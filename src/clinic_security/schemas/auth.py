"""Login token and current-user schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, computed_field


class TokenResponse(BaseModel):
    """Bearer token pair issued by a successful login."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(description="Seconds until the access token expires")


class UserResponse(BaseModel):
    """The authenticated staff member, as returned by ``/auth/me``."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    role: str
    is_active: bool
    created_at: datetime
    last_login_at: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def display_name(self) -> str | None:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) or self.email
