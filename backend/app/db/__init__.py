from app.db.base import Base
from app.db.models import (
    AvailabilityRule,
    Booking,
    BookingRequest,
    GoogleOAuthCredential,
    Host,
)

__all__ = [
    "Base",
    "AvailabilityRule",
    "Booking",
    "BookingRequest",
    "GoogleOAuthCredential",
    "Host",
]
