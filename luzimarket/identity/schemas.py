"""
schemas.py: Identity Session data contracts.

Defines:
  - SubjectType enum
  - SessionRecord, UserRecord  (store-level records, persistence-agnostic)
  - SubjectContext             (result of validating an access credential)
  - TokenPair / AuthResponse   (credential issuance responses)
  - Request bodies for register, login, refresh, update-session
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from luzimarket.delivery.schemas import DeliveryZone
from luzimarket.schemas import CamelModel

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
MIN_PASSWORD_LENGTH = 8


class SubjectType(str, Enum):
    guest = "guest"
    authenticated = "authenticated"


# ---------------------------------------------------------------------------
# Store records
# ---------------------------------------------------------------------------

class SessionRecord(BaseModel):
    session_id: str
    subject_type: SubjectType
    subject_id: Optional[str] = None
    delivery_zone_id: Optional[str] = None
    revoked: bool = False


class UserRecord(BaseModel):
    user_id: str
    email: str
    password_hash: str
    name: Optional[str] = None
    preferred_delivery_zone_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

class SubjectContext(CamelModel):
    """Who the bearer of a valid access credential is."""
    session_id: str
    subject_type: SubjectType
    subject_id: Optional[str] = None
    expires_at: Optional[datetime] = None

    @property
    def is_authenticated(self) -> bool:
        return self.subject_type == SubjectType.authenticated


class TokenPair(CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int
    session_id: str
    subject_type: SubjectType
    subject_id: Optional[str] = None


class UserOut(CamelModel):
    id: str
    email: str
    name: Optional[str] = None


class AuthResponse(TokenPair):
    user: Optional[UserOut] = None


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH, max_length=72)
    name: Optional[str] = Field(default=None, max_length=255)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class RefreshRequest(CamelModel):
    refresh_token: str = Field(..., min_length=1)


class UpdateSessionRequest(CamelModel):
    delivery_zone_id: str = Field(..., min_length=1)


class SessionZoneOut(CamelModel):
    id: str
    delivery_zone_id: str
    delivery_zone: DeliveryZone


class SessionZoneResponse(CamelModel):
    message: str
    session: SessionZoneOut


class RestorePreferencesResponse(CamelModel):
    """Outcome of restore-preferences. `resolved` is false when the saved zone is no longer offered."""
    message: str
    resolved: bool
    delivery_zone_id: str
    state_code: Optional[str] = None
    session: Optional[SessionZoneOut] = None
