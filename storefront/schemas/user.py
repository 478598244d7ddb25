from pydantic import BaseModel, Field
from typing import Optional


# Required-field and format rules for these bodies are checked in
# user_service so failures come back as 400 with a readable message.
class UserRegister(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    confirm_password: Optional[str] = Field(default=None, alias="confirmPassword")
    referral_code: Optional[str] = Field(default=None, alias="referralCode")

    model_config = {"populate_by_name": True}


class UserLogin(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class UserProfileUpdate(BaseModel):
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    username: Optional[str] = None
    image: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    old_password: Optional[str] = Field(default=None, alias="oldPassword")
    new_password: Optional[str] = Field(default=None, alias="newPassword")

    model_config = {"populate_by_name": True}


class EmailRequest(BaseModel):
    email: Optional[str] = None


class OtpVerifyRequest(BaseModel):
    email: Optional[str] = None
    otp: Optional[str] = None


class PasswordResetRequest(BaseModel):
    email: Optional[str] = None
    otp: Optional[str] = None
    new_password: Optional[str] = Field(default=None, alias="newPassword")

    model_config = {"populate_by_name": True}


class RefreshTokenRequest(BaseModel):
    refresh_token: Optional[str] = None
