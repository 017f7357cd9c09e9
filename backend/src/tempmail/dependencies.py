"""Shared FastAPI dependencies for token-scoped endpoints.

This module provides:
- get_address_service: AddressService bound to the request's session
- get_temp_address: Resolve the path ``{token}`` to an active address (404)
- get_live_temp_address: Same, but also rejects expired addresses (410)

The access token is the only credential of the inbox API: whoever holds
it can read and delete the address's mail.
"""

from fastapi import Depends, HTTPException, Path, status
from sqlalchemy.orm import Session

from .addresses.service import AddressService
from .config import settings
from .database import get_db
from .models.base import utcnow
from .models.temp_address import TempAddress


def get_address_service(db: Session = Depends(get_db)) -> AddressService:
    return AddressService(db, domain=settings.EMAIL_DOMAIN)


def get_temp_address(
    token: str = Path(..., max_length=64, description="Access token of the temporary address"),
    service: AddressService = Depends(get_address_service),
) -> TempAddress:
    """Resolve an access token to its active temporary address.

    Raises:
        HTTPException 404: Unknown token or deactivated address
    """
    address = service.find_by_token(token)
    if address is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Temporary email not found",
        )
    return address


def get_live_temp_address(
    address: TempAddress = Depends(get_temp_address),
) -> TempAddress:
    """Like get_temp_address, but an expired address is gone.

    Raises:
        HTTPException 410: Address has expired
    """
    if not address.is_live(utcnow()):
        raise HTTPException(
            status_code=status.HTTP_410_GONE,
            detail="Temporary email has expired",
        )
    return address
