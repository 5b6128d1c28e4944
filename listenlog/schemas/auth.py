"""Pydantic schemas for the auth API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Credentials(BaseModel):
    email: str = Field(..., max_length=320, description="Account email address")
    password: str = Field(..., max_length=1024)

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, value: str) -> str:
        return (value or "").strip().lower()


class UserResponse(BaseModel):
    id: int
    email: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SessionResponse(BaseModel):
    token: str
    expires_at: datetime
    user: UserResponse

    model_config = ConfigDict(from_attributes=True)


class SignoutResponse(BaseModel):
    signed_out: bool
