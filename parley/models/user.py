#   _____        _____  _      ______ __     __
#  |  __ \ /\   |  __ \| |    |  ____|\ \   / /
#  | |__) /  \  | |__) | |    | |__    \ \_/ /
#  |  ___/ /\ \ |  _  /| |    |  __|    \   /
#  | |  / ____ \| | \ \| |____| |____    | |
#  |_| /_/    \_\_|  \_\______|______|   |_|
#

# User models - Definitions for user profiles and profile updates.

# --------------------------------------------------------------------------
#                                  Functions
# --------------------------------------------------------------------------
# UserProfile.display_label: Name shown to friends (username, then name, then id).
# ProfileUpdate.validate_username: Rejects blank usernames.

# --------------------------------------------------------------------------
#                            Variables and others
# --------------------------------------------------------------------------
# Gender: Enum for profile gender.
# UserProfile: Full profile record keyed by user_id.
# ProfileUpdate: Body of the explicit profile update operation.
# PublicProfile: Profile as shown to other users.

# --------------------------------------------------------------------------
#                                   imports
# --------------------------------------------------------------------------
# pydantic: Data validation.
# datetime: Time handling.
# typing: Type hints.
# enum: Enumerations.
# parley.constants: Field length limits.

from pydantic import BaseModel, Field, field_validator
from datetime import datetime, timezone
from typing import Optional
from enum import Enum

from parley.constants import USERNAME_MAX_LENGTH, NAME_MAX_LENGTH, BIO_MAX_LENGTH


class Gender(str, Enum):
    """Profile gender"""
    UNSPECIFIED = "unspecified"
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class UserProfile(BaseModel):
    """Complete profile record"""
    user_id: str
    email: str = ""
    username: Optional[str] = None  # Unset until the first profile update
    name: str = ""
    bio: str = ""
    gender: Gender = Gender.UNSPECIFIED
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None

    @property
    def display_label(self) -> str:
        return self.username or self.name or self.user_id


class ProfileUpdate(BaseModel):
    """Profile update request - username is case-sensitive and must be unique"""
    username: str = Field(..., max_length=USERNAME_MAX_LENGTH)
    name: str = Field("", max_length=NAME_MAX_LENGTH)
    bio: str = Field("", max_length=BIO_MAX_LENGTH)
    gender: Gender = Gender.UNSPECIFIED

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Username is required")
        return v


class PublicProfile(BaseModel):
    """Profile info visible to other users"""
    user_id: str
    username: Optional[str] = None
    name: str = ""
    bio: str = ""
    gender: Gender = Gender.UNSPECIFIED
