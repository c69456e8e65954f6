from pydantic import BaseModel, EmailStr, Field, field_validator, ConfigDict, ValidationInfo
from datetime import datetime
from typing import Optional

MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_LENGTH = 72  # bcrypt limit


# Schema for user registration
class UserRegister(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH, max_length=MAX_PASSWORD_LENGTH)


# Schema for user login
class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class EmailUpdate(BaseModel):
    email: EmailStr


class PasswordUpdate(BaseModel):
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH, max_length=MAX_PASSWORD_LENGTH)
    confirm_password: str = Field(..., alias="confirmPassword")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator('confirm_password')
    @classmethod
    def confirm_matches(cls, v, info: ValidationInfo):
        password = info.data.get('password')
        if password and v != password:
            raise ValueError('Passwords do not match')
        return v


class AvatarUpdate(BaseModel):
    profile_image_ref: str = Field(..., min_length=1, max_length=512)

    @field_validator('profile_image_ref')
    @classmethod
    def no_traversal(cls, v):
        if '..' in v or v.startswith(('javascript:', 'data:')):
            raise ValueError('Invalid image reference')
        return v


# Schema for user response
class UserResponse(BaseModel):
    id: str
    email: str
    profile_image_ref: Optional[str] = None
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class LoginResponse(BaseModel):
    user: UserResponse
    csrf_token: str
    expires_at: datetime


class CsrfTokenResponse(BaseModel):
    csrf_token: str


class MessageResponse(BaseModel):
    message: str
