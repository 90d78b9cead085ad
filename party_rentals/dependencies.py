import datetime
from zoneinfo import ZoneInfo

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from .cancellations import CancellationService
from .config import settings
from .database import get_db
from .exceptions import (
    BookingError, ConflictError, EmailMismatchError, NotFoundError, PaymentProviderError, RefundFailedError,
)
from .notifications import EmailNotifier
from .payments import StripeGateway


def get_now() -> datetime.datetime:
    return datetime.datetime.now(ZoneInfo(settings.BUSINESS_TIMEZONE))


def get_today(now: datetime.datetime = Depends(get_now)) -> datetime.date:
    return now.date()


def get_refund_gateway() -> StripeGateway:
    return StripeGateway()


def get_notifier() -> EmailNotifier:
    return EmailNotifier()


def get_cancellation_service(
        db: Session = Depends(get_db),
        gateway: StripeGateway = Depends(get_refund_gateway),
        notifier: EmailNotifier = Depends(get_notifier),
        now: datetime.datetime = Depends(get_now),
) -> CancellationService:
    return CancellationService(db, gateway, notifier, today=now.date(), now=now)


def http_error(exc: BookingError) -> HTTPException:
    """Maps a domain error onto the HTTP status the API reports for it."""
    if isinstance(exc, EmailMismatchError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, ConflictError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, (RefundFailedError, PaymentProviderError)):
        code = status.HTTP_502_BAD_GATEWAY
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=exc.message)
