from fastapi import APIRouter, Depends, status
from pydantic import EmailStr

from fastapi_limiter.depends import RateLimiter

from .. import schemas
from ..auth import get_key_by_subject_or_ip
from ..cancellations import CancellationService
from ..dependencies import get_cancellation_service, http_error
from ..exceptions import BookingError

router = APIRouter(prefix="/cancellations", tags=["Cancellations"])


@router.get("/preview", response_model=schemas.CancellationPreview)
def preview_cancellation(
        booking_id: int,
        email: EmailStr,
        service: CancellationService = Depends(get_cancellation_service),
):
    """
    What the customer would get back if they cancelled today, plus open dates to move to instead.
    """
    try:
        return service.preview(booking_id, email)
    except BookingError as e:
        raise http_error(e)


@router.post("/", response_model=schemas.CancellationRequestRead, status_code=status.HTTP_201_CREATED)
def request_cancellation(
        cancellation: schemas.CancellationCreate,
        service: CancellationService = Depends(get_cancellation_service),
        limit: None = Depends(RateLimiter(times=5, minutes=1, identifier=get_key_by_subject_or_ip))
):
    try:
        return service.request_cancellation(
            booking_id=cancellation.booking_id,
            email=cancellation.email,
            reason=cancellation.reason,
            cancellation_type=cancellation.cancellation_type,
            declined_reschedule=cancellation.declined_reschedule,
        )
    except BookingError as e:
        raise http_error(e)
