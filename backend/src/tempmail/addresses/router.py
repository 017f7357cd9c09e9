"""Temporary address API endpoints

Generate, extend, inspect and deactivate temporary addresses. Every
endpoint except /generate is addressed by the access token returned on
creation.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import get_address_service, get_temp_address
from ..inbox.service import InboxService
from ..models.temp_address import TempAddress
from ..rate_limit import rate_limit
from .schemas import (
    AddressStatsResponse,
    DeactivateAddressResponse,
    ExtendAddressRequest,
    ExtendAddressResponse,
    GenerateAddressRequest,
    TempAddressResponse,
)
from .service import AddressService, AddressTakenError, InvalidDomainError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/temp-email",
    tags=["Temporary Addresses"],
    dependencies=[Depends(rate_limit)],
)


@router.post("/generate", response_model=TempAddressResponse, status_code=status.HTTP_201_CREATED)
def generate_address(
    request: GenerateAddressRequest,
    db: Session = Depends(get_db),
    service: AddressService = Depends(get_address_service),
) -> TempAddressResponse:
    """Create a temporary address.

    A random ``[a-z0-9]{10}`` local part is used unless ``custom_address``
    is given.

    Raises:
        HTTPException 400: Custom address is not on the service domain
        HTTPException 409: Custom address already exists
    """
    try:
        address = service.create_address(
            expiry_hours=request.expiry_hours,
            custom_address=request.custom_address,
        )
    except InvalidDomainError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except AddressTakenError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    db.commit()

    return TempAddressResponse(
        email=address.email_address,
        token=address.access_token,
        created_at=address.created_at,
        expires_at=address.expires_at,
    )


@router.put("/{token}/extend", response_model=ExtendAddressResponse)
def extend_address(
    request: ExtendAddressRequest,
    address: TempAddress = Depends(get_temp_address),
    db: Session = Depends(get_db),
    service: AddressService = Depends(get_address_service),
) -> ExtendAddressResponse:
    """Move the expiry to ``hours`` from now."""
    service.extend_expiry(address, request.hours)
    db.commit()

    return ExtendAddressResponse(
        email=address.email_address,
        expires_at=address.expires_at,
        message=f"Email extended by {request.hours} hours",
    )


@router.get("/{token}/stats", response_model=AddressStatsResponse)
def address_stats(
    address: TempAddress = Depends(get_temp_address),
    db: Session = Depends(get_db),
) -> AddressStatsResponse:
    inbox = InboxService(db)
    total = inbox.count_messages(address.id)
    unread = inbox.count_messages(address.id, only_unread=True)

    return AddressStatsResponse(
        email=address.email_address,
        created_at=address.created_at,
        expires_at=address.expires_at,
        total_emails=total,
        unread_emails=unread,
        read_emails=total - unread,
    )


@router.delete("/{token}", response_model=DeactivateAddressResponse)
def deactivate_address(
    address: TempAddress = Depends(get_temp_address),
    db: Session = Depends(get_db),
    service: AddressService = Depends(get_address_service),
) -> DeactivateAddressResponse:
    """Deactivate the address.

    It stops receiving mail at once; the address and its messages are
    removed by the next retention cleanup.
    """
    service.deactivate(address)
    db.commit()

    return DeactivateAddressResponse(
        email=address.email_address,
        message="Temporary email deactivated",
    )
