"""Pydantic schemas for Inbox API

Defines request/response models for listing, reading, searching and
deleting the messages of one temporary address.
"""

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class AttachmentInfo(BaseModel):
    """Attachment metadata (content is never stored)"""
    filename: str
    content_type: str
    size_bytes: int = Field(..., description="Decoded payload size in bytes")
    content_id: Optional[str] = None
    content_disposition: Optional[str] = None
    has_content: bool = False


class AddressSummary(BaseModel):
    """The temporary address a response belongs to"""
    email: str
    expires_at: datetime


class EmailPreview(BaseModel):
    """Inbox list item - summary view for message list"""
    id: UUID
    sender_email: str
    sender_name: Optional[str] = None
    subject: str
    received_at: datetime
    is_read: bool
    has_attachments: bool
    size_bytes: int
    preview: str = Field(..., description="First 150 characters of the text body")


class Pagination(BaseModel):
    total: int
    unread: int
    limit: int
    offset: int
    has_more: bool


class EmailListResponse(BaseModel):
    """Paginated inbox list response"""
    emails: List[EmailPreview]
    pagination: Pagination
    temp_address: AddressSummary


class EmailDetail(BaseModel):
    """Full message content"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    message_id: str
    sender_email: str
    sender_name: Optional[str] = None
    recipient_email: str
    subject: str
    received_at: datetime
    is_read: bool
    body_text: str
    body_html: str
    attachments: List[AttachmentInfo] = Field(default_factory=list)
    headers: Dict[str, str] = Field(default_factory=dict)
    size_bytes: int


class EmailDetailResponse(BaseModel):
    email: EmailDetail
    temp_address: AddressSummary


class SearchRequest(BaseModel):
    """Request body for POST /temp-email/{token}/search"""
    query: str = Field(..., min_length=1, max_length=100)
    limit: int = Field(20, ge=1, le=50)
    offset: int = Field(0, ge=0)


class SearchResponse(BaseModel):
    emails: List[EmailPreview]
    query: str
    count: int


class DeleteResponse(BaseModel):
    message: str
    deleted_count: int
