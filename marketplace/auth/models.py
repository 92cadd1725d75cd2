from typing import Optional
from pydantic import BaseModel, Field


class SignupIn(BaseModel):
    email: str = Field(..., examples=["user@example.com"])
    password: str = Field(..., examples=["StrongPassword1!"])
    name: Optional[str] = Field(None, max_length=128, examples=["Full Name"])


class SignIn(BaseModel):
    email: str = Field(...)
    password: str = Field(...)


class EmailIn(BaseModel):
    email: str = Field(..., min_length=1)


class TokenIn(BaseModel):
    token: str = Field(..., min_length=1)


class ResetPasswordIn(BaseModel):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class PhoneIn(BaseModel):
    phoneNumber: str = Field(..., min_length=1)


class OtpVerifyIn(BaseModel):
    phoneNumber: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1)


class ProfileUpdateIn(BaseModel):
    name: Optional[str] = Field(None, max_length=128)
    phoneNumber: Optional[str] = None

    model_config = {"extra": "forbid"}
