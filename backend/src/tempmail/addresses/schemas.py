"""Pydantic schemas for temporary address endpoints

Defines request/response models for creating, extending and
inspecting temporary addresses.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, field_validator

from ..config import settings


class GenerateAddressRequest(BaseModel):
    """Request body for POST /temp-email/generate"""
    custom_address: Optional[str] = Field(
        None,
        max_length=320,
        description="Requested address (must use the service domain)",
    )
    expiry_hours: int = Field(
        settings.DEFAULT_EXPIRY_HOURS,
        ge=1,
        le=settings.MAX_EXPIRY_HOURS,
        description="Lifetime in hours (1-168)",
    )

    @field_validator("custom_address")
    @classmethod
    def validate_custom_address(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip().lower()
        local, _, domain = value.partition("@")
        if not local or not domain or " " in value:
            raise ValueError("custom_address must be a valid email address")
        return value


class TempAddressResponse(BaseModel):
    """Newly generated temporary address and its access token"""
    email: str
    token: str = Field(..., description="Bearer token for the inbox endpoints")
    created_at: datetime
    expires_at: datetime


class ExtendAddressRequest(BaseModel):
    """Request body for PUT /temp-email/{token}/extend"""
    hours: int = Field(24, ge=1, le=settings.MAX_EXPIRY_HOURS, description="New lifetime from now, in hours")


class ExtendAddressResponse(BaseModel):
    email: str
    expires_at: datetime
    message: str


class AddressStatsResponse(BaseModel):
    """Message counters for one temporary address"""
    email: str
    created_at: datetime
    expires_at: datetime
    total_emails: int
    unread_emails: int
    read_emails: int


class DeactivateAddressResponse(BaseModel):
    email: str
    message: str
