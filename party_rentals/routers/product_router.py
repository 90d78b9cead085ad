import json
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from redis import Redis
from typing import List

from .. import schemas, crud
from ..config import settings
from ..database import get_db, get_redis_client

router = APIRouter(prefix="/products", tags=["Products"])

ALL_PRODUCTS_KEY = "all_products"


def product_cache_key(product_id: int) -> str:
    return f"product_{product_id}"


@router.get("/", response_model=List[schemas.ProductRead])
def read_products(
        skip: int = 0,
        limit: int = 100,
        db: Session = Depends(get_db),
        redis_client: Redis = Depends(get_redis_client)
):
    # 1. Check cache first
    cached_products = redis_client.get(ALL_PRODUCTS_KEY)
    if cached_products:
        return json.loads(cached_products)

    # 2. Cache miss, query DB
    products = crud.get_products(db, skip=skip, limit=limit)
    products_list = [schemas.ProductRead.model_validate(p).model_dump(mode="json") for p in products]

    # 3. Store result in cache
    redis_client.set(ALL_PRODUCTS_KEY, json.dumps(products_list), ex=settings.PRODUCT_CACHE_SECONDS)
    return products_list


@router.get("/{product_id}", response_model=schemas.ProductRead)
def read_product(
        product_id: int,
        db: Session = Depends(get_db),
        redis_client: Redis = Depends(get_redis_client)
):
    cache_key = product_cache_key(product_id)
    cached_product = redis_client.get(cache_key)
    if cached_product:
        return json.loads(cached_product)

    db_product = crud.get_product(db, product_id=product_id)
    if db_product is None or not db_product.is_active:
        raise HTTPException(status_code=404, detail="Product not found")

    product_data = schemas.ProductRead.model_validate(db_product).model_dump(mode="json")
    redis_client.set(cache_key, json.dumps(product_data), ex=settings.PRODUCT_CACHE_SECONDS)
    return product_data
