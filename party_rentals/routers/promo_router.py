import datetime
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..database import get_db
from ..dependencies import get_today
from ..promotions import calculate_discount, normalize_code

router = APIRouter(prefix="/promo-codes", tags=["Promotions"])


@router.post("/validate", response_model=schemas.PromoValidateResponse)
def validate_promo_code(
        request: schemas.PromoValidateRequest,
        db: Session = Depends(get_db),
        today: datetime.date = Depends(get_today),
):
    """
    Checks a code against an order amount. Invalid codes come back as valid=false with a reason, not an error status.
    """
    code = normalize_code(request.code)
    promo = crud.get_promo_code(db, code)
    result = calculate_discount(promo, request.order_amount, today, request.product_id)
    return schemas.PromoValidateResponse(
        valid=result.valid,
        code=code if result.valid else None,
        discount=result.discount,
        error=result.error,
    )
