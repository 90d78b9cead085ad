import datetime
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional

from .. import bookings, crud, models, schemas
from ..auth import get_current_admin
from ..cancellations import CancellationService, policy_read
from ..database import get_db
from ..dependencies import get_cancellation_service, http_error
from ..exceptions import BookingError
from ..refunds import DEFAULT_POLICY, RefundPolicy

router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(get_current_admin)])


# --- Bookings ---

@router.get("/bookings", response_model=List[schemas.BookingRead])
def list_bookings(
        status_filter: Optional[models.BookingStatus] = Query(default=None, alias="status"),
        start_date: Optional[datetime.date] = None,
        end_date: Optional[datetime.date] = None,
        skip: int = 0,
        limit: int = 100,
        db: Session = Depends(get_db),
):
    return crud.list_bookings(db, status=status_filter, start_date=start_date, end_date=end_date,
                              skip=skip, limit=limit)


@router.patch("/bookings/{booking_id}/status", response_model=schemas.BookingRead)
def update_booking_status(
        booking_id: int,
        update: schemas.BookingStatusUpdate,
        db: Session = Depends(get_db),
):
    db_booking = crud.get_booking(db, booking_id)
    if db_booking is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    try:
        return bookings.update_status(db, db_booking, update.status)
    except BookingError as e:
        raise http_error(e)


@router.post("/bookings/{booking_id}/payments", response_model=schemas.BookingRead)
def record_payment(
        booking_id: int,
        payment: schemas.PaymentCreate,
        db: Session = Depends(get_db),
):
    db_booking = crud.get_booking(db, booking_id)
    if db_booking is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    try:
        return bookings.record_payment(db, db_booking, payment.amount, payment.payment_reference)
    except BookingError as e:
        raise http_error(e)


# --- Blackout dates ---

@router.get("/blackout-dates", response_model=List[schemas.BlackoutDateRead])
def list_blackout_dates(
        start_date: Optional[datetime.date] = None,
        end_date: Optional[datetime.date] = None,
        db: Session = Depends(get_db),
):
    return crud.list_blackout_dates(db, start_date=start_date, end_date=end_date)


@router.post("/blackout-dates", response_model=schemas.BlackoutDateRead, status_code=status.HTTP_201_CREATED)
def create_blackout_date(
        blackout: schemas.BlackoutDateCreate,
        db: Session = Depends(get_db),
):
    if blackout.product_id is not None and crud.get_product(db, blackout.product_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return crud.create_blackout_date(db, blackout)


@router.delete("/blackout-dates/{blackout_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_blackout_date(
        blackout_id: int,
        db: Session = Depends(get_db),
):
    if not crud.delete_blackout_date(db, blackout_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Blackout date not found")


# --- Cancellation policy ---

@router.get("/cancellation-policy", response_model=schemas.CancellationPolicyRead)
def read_cancellation_policy(db: Session = Depends(get_db)):
    db_policy = crud.get_active_policy(db)
    policy = RefundPolicy.from_model(db_policy) if db_policy is not None else DEFAULT_POLICY
    return policy_read(policy)


@router.put("/cancellation-policy", response_model=schemas.CancellationPolicyRead)
def replace_cancellation_policy(
        policy: schemas.CancellationPolicyUpdate,
        db: Session = Depends(get_db),
):
    """
    Stores a new active policy. Requests already open keep the refund frozen when they were made.
    """
    db_policy = crud.replace_active_policy(db, policy)
    return policy_read(RefundPolicy.from_model(db_policy))


# --- Cancellation requests ---

@router.get("/cancellations", response_model=List[schemas.CancellationRequestRead])
def list_cancellation_requests(
        status_filter: Optional[models.CancellationRequestStatus] = Query(default=None, alias="status"),
        limit: int = 50,
        service: CancellationService = Depends(get_cancellation_service),
):
    return service.list_requests(status=status_filter, limit=limit)


@router.post("/cancellations/{request_id}/review", response_model=schemas.ReviewResult)
def review_cancellation_request(
        request_id: int,
        review: schemas.CancellationReview,
        service: CancellationService = Depends(get_cancellation_service),
):
    try:
        return service.review(request_id, review)
    except BookingError as e:
        raise http_error(e)


# --- Dashboard ---

@router.get("/attention-items", response_model=List[schemas.AttentionItemRead])
def list_attention_items(
        status_filter: Optional[models.AttentionStatus] = Query(default=models.AttentionStatus.PENDING, alias="status"),
        db: Session = Depends(get_db),
):
    return crud.list_attention_items(db, status=status_filter)
