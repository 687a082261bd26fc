"""
Database Schemas

Pydantic models for the documents the services store and the payloads the
API accepts. Stored models carry their collection name in the docstring.

Meeting models are serialized with camelCase keys (hostId, isMuted, ...),
which is the shape clients persist and read back.
"""

from datetime import datetime
from typing import Annotated, List, Optional

from email_validator import EmailNotValidError, validate_email
from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Accounts are looked up by the exact address the user typed, so the
# normalized form email-validator computes is only used to reject garbage.
def _check_email(value: str) -> str:
    try:
        validate_email(value, check_deliverability=False, test_environment=True)
    except EmailNotValidError as e:
        raise ValueError(str(e))
    return value


Email = Annotated[str, AfterValidator(_check_email)]


# --------------------- Users ---------------------

class AuthUser(BaseModel):
    """
    Users collection schema
    Collection name: "authuser"
    """
    id: str = Field(..., description="User id")
    name: str = Field(..., description="Full name")
    email: str = Field(..., description="Email address, matched exactly on login")
    password_hash: str = Field(..., description="Hashed password")
    avatar: Optional[str] = Field(None, description="Avatar URL or data URI")
    bio: Optional[str] = None
    phone: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PasswordReset(BaseModel):
    """
    Password reset tokens
    Collection name: "passwordreset"
    """
    id: str = Field(..., description="Record id")
    email: str = Field(..., description="Email of the account being reset")
    token: str = Field(..., description="Single-use random token")
    expires_at: datetime = Field(..., description="Token is rejected from this instant on")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserIdentity(BaseModel):
    """Public view of a user; never carries the password hash."""
    id: str
    email: str
    name: str
    avatar: Optional[str] = None


# --------------------- Meetings ---------------------

class MeetingSettings(CamelModel):
    allow_screen_sharing: bool = True
    allow_chat: bool = True
    mute_participants_on_entry: bool = True
    allow_participants_to_unmute: bool = True
    allow_recording: bool = False


class MeetingSettingsOverride(CamelModel):
    allow_screen_sharing: Optional[bool] = None
    allow_chat: Optional[bool] = None
    mute_participants_on_entry: Optional[bool] = None
    allow_participants_to_unmute: Optional[bool] = None
    allow_recording: Optional[bool] = None


class Participant(CamelModel):
    id: str = Field(..., description="User id of the participant")
    name: str = Field(..., description="Display name copied at join time")
    is_host: bool = False
    is_muted: bool = False
    is_video_on: bool = False
    join_time: datetime


class Meeting(CamelModel):
    """
    Meeting records, persisted together as one blob
    Storage key: "meetings"
    """
    id: str = Field(..., description="Meeting code, e.g. abc-defg-hij")
    host_id: str = Field(..., description="User id of the host")
    host_name: str
    start_time: datetime
    participants: List[Participant] = Field(default_factory=list)
    is_active: bool = True
    settings: MeetingSettings = Field(default_factory=MeetingSettings)

    def find_participant(self, participant_id: str) -> Optional[Participant]:
        for participant in self.participants:
            if participant.id == participant_id:
                return participant
        return None


# --------------------- Payloads ---------------------

class RegisterPayload(BaseModel):
    name: str = Field(..., min_length=1)
    email: Email
    password: str = Field(..., min_length=1)
    avatar: Optional[str] = None


class LoginPayload(BaseModel):
    email: Email
    password: str = Field(..., min_length=1)


class UpdateProfilePayload(BaseModel):
    name: str = Field(..., min_length=1)
    email: Email
    bio: Optional[str] = None
    phone: Optional[str] = None
    avatar: Optional[str] = None


class ChangePasswordPayload(CamelModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)


class ForgotPasswordPayload(BaseModel):
    email: Email


class ResetPasswordPayload(BaseModel):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class MeetingCreate(BaseModel):
    settings: Optional[MeetingSettingsOverride] = None


# --------------------- Responses ---------------------

class AuthResponse(BaseModel):
    user: UserIdentity
    token: str


class UserResponse(BaseModel):
    user: UserIdentity


class MessageResponse(BaseModel):
    message: str
