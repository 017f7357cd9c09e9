"""Inbox API endpoints

Provides endpoints for reading, searching and deleting the messages
received by one temporary address, addressed by its access token.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import get_live_temp_address, get_temp_address
from ..models.temp_address import TempAddress
from ..rate_limit import rate_limit
from .schemas import (
    AddressSummary,
    DeleteResponse,
    EmailDetail,
    EmailDetailResponse,
    EmailListResponse,
    Pagination,
    SearchRequest,
    SearchResponse,
)
from .service import InboxService, to_preview

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/temp-email",
    tags=["Inbox"],
    dependencies=[Depends(rate_limit)],
)


def _summary(address: TempAddress) -> AddressSummary:
    return AddressSummary(email=address.email_address, expires_at=address.expires_at)


@router.get("/{token}/emails", response_model=EmailListResponse)
def list_emails(
    address: TempAddress = Depends(get_live_temp_address),
    db: Session = Depends(get_db),
    limit: int = Query(50, ge=1, le=100, description="Page size (default 50, max 100)"),
    offset: int = Query(0, ge=0),
    only_unread: bool = Query(False, description="Only return unread messages"),
) -> EmailListResponse:
    """List the messages of a temporary address, newest first.

    Raises:
        HTTPException 404: Unknown token
        HTTPException 410: Address has expired
    """
    inbox = InboxService(db)
    messages = inbox.list_messages(address.id, limit=limit, offset=offset, only_unread=only_unread)
    total = inbox.count_messages(address.id)
    unread = inbox.count_messages(address.id, only_unread=True)

    return EmailListResponse(
        emails=[to_preview(message) for message in messages],
        pagination=Pagination(
            total=total,
            unread=unread,
            limit=limit,
            offset=offset,
            has_more=offset + limit < total,
        ),
        temp_address=_summary(address),
    )


@router.get("/{token}/emails/{email_id}", response_model=EmailDetailResponse)
def get_email(
    email_id: UUID,
    address: TempAddress = Depends(get_temp_address),
    db: Session = Depends(get_db),
) -> EmailDetailResponse:
    """Return one full message and mark it read."""
    inbox = InboxService(db)
    message = inbox.get_message(address.id, email_id)
    if message is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Email not found")

    inbox.mark_read(message)
    db.commit()

    return EmailDetailResponse(
        email=EmailDetail.model_validate(message),
        temp_address=_summary(address),
    )


@router.delete("/{token}/emails/{email_id}", response_model=DeleteResponse)
def delete_email(
    email_id: UUID,
    address: TempAddress = Depends(get_temp_address),
    db: Session = Depends(get_db),
) -> DeleteResponse:
    if not InboxService(db).delete_message(address.id, email_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Email not found")
    db.commit()

    return DeleteResponse(message="Email deleted successfully", deleted_count=1)


@router.delete("/{token}/emails", response_model=DeleteResponse)
def delete_all_emails(
    address: TempAddress = Depends(get_temp_address),
    db: Session = Depends(get_db),
) -> DeleteResponse:
    deleted = InboxService(db).delete_all(address.id)
    db.commit()

    logger.info(f"Deleted {deleted} messages", extra={"temp_address_id": address.id})
    return DeleteResponse(message=f"{deleted} emails deleted successfully", deleted_count=deleted)


@router.post("/{token}/search", response_model=SearchResponse)
def search_emails(
    request: SearchRequest,
    address: TempAddress = Depends(get_temp_address),
    db: Session = Depends(get_db),
) -> SearchResponse:
    """Search subject, sender and text body (case-insensitive)."""
    messages = InboxService(db).search(
        address.id,
        request.query,
        limit=request.limit,
        offset=request.offset,
    )

    return SearchResponse(
        emails=[to_preview(message) for message in messages],
        query=request.query,
        count=len(messages),
    )
