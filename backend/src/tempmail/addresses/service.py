"""Temporary address lifecycle.

Creates, looks up, extends and deactivates rows of the temp_address
table. The SMTP ingest path never calls into this module; it only
reads the rows through the AddressResolverPort.
"""

import logging
import secrets
import string
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.base import utcnow
from ..models.temp_address import TempAddress

logger = logging.getLogger(__name__)

LOCAL_PART_ALPHABET = string.ascii_lowercase + string.digits
LOCAL_PART_LENGTH = 10
MAX_GENERATION_ATTEMPTS = 10


class AddressError(Exception):
    """Base class for address management errors."""
    pass


class InvalidDomainError(AddressError):
    """Custom address does not use the service domain."""
    pass


class AddressTakenError(AddressError):
    """Requested address already exists."""
    pass


def generate_local_part(length: int = LOCAL_PART_LENGTH) -> str:
    """Random ``[a-z0-9]`` local part."""
    return "".join(secrets.choice(LOCAL_PART_ALPHABET) for _ in range(length))


class AddressService:
    """Service for temporary address management.

    Args:
        db: Database session (the caller commits)
        domain: Domain for generated addresses
        clock: Returns the current aware datetime
    """

    def __init__(
        self,
        db: Session,
        domain: str,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.domain = domain.lower()
        self.clock = clock

    def find_by_address(self, email_address: str) -> Optional[TempAddress]:
        return self.db.query(TempAddress).filter(
            func.lower(TempAddress.email_address) == email_address.strip().lower()
        ).first()

    def find_by_token(self, access_token: str) -> Optional[TempAddress]:
        """Find an active address by its access token.

        Deactivated addresses are not returned.
        """
        return self.db.query(TempAddress).filter(
            TempAddress.access_token == access_token,
            TempAddress.is_active.is_(True),
        ).first()

    def generate_random_address(self) -> str:
        """Pick an unused random address on the service domain.

        Raises:
            AddressError: If no free address was found
        """
        for _ in range(MAX_GENERATION_ATTEMPTS):
            candidate = f"{generate_local_part()}@{self.domain}"
            if self.find_by_address(candidate) is None:
                return candidate
        raise AddressError("Could not generate a unique address")

    def create_address(
        self,
        expiry_hours: int,
        custom_address: Optional[str] = None,
    ) -> TempAddress:
        """Create a temporary address.

        Args:
            expiry_hours: Lifetime of the address
            custom_address: Requested address, or None for a random one

        Raises:
            InvalidDomainError: Custom address is not on the service domain
            AddressTakenError: Custom address already exists
        """
        if custom_address:
            email_address = custom_address.strip().lower()
            if not email_address.endswith(f"@{self.domain}"):
                raise InvalidDomainError(f"Custom address must use domain: {self.domain}")
            if self.find_by_address(email_address) is not None:
                raise AddressTakenError("Email address already exists")
        else:
            email_address = self.generate_random_address()

        now = self.clock()
        address = TempAddress(
            email_address=email_address,
            created_at=now,
            expires_at=now + timedelta(hours=expiry_hours),
            is_active=True,
        )
        self.db.add(address)
        self.db.flush()

        logger.info(
            f"Created temporary address (expires in {expiry_hours}h)",
            extra={"temp_address_id": address.id},
        )
        return address

    def extend_expiry(self, address: TempAddress, hours: int) -> TempAddress:
        """Set the expiry to ``hours`` from now."""
        address.expires_at = self.clock() + timedelta(hours=hours)
        self.db.flush()
        logger.info(f"Extended temporary address by {hours}h", extra={"temp_address_id": address.id})
        return address

    def deactivate(self, address: TempAddress) -> TempAddress:
        """Stop the address from receiving mail; it is removed by the next cleanup."""
        address.is_active = False
        self.db.flush()
        logger.info("Deactivated temporary address", extra={"temp_address_id": address.id})
        return address
