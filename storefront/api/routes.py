from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from typing import List, Optional

from storefront.core.models import (
    OrderCreate,
    OrderCreatedResponse,
    OrderResponse,
    OrderSummaryResponse,
    StatusSweepResponse,
    ErrorResponse,
)
from storefront.core.errors import OrderNotFoundError
from storefront.data.store import DataStore, get_store
from storefront.orders.creation import OrderService
from storefront.orders.status import OrderStatusService
from storefront.messaging.producer import get_producer, OrderEventProducer
from storefront.caching.redis_client import get_redis, RedisClient
from storefront.core.config import settings

router = APIRouter(prefix="/api/orders", tags=["orders"])

def get_order_service(
    store: DataStore = Depends(get_store),
    producer: OrderEventProducer = Depends(get_producer),
) -> OrderService:
    return OrderService(store, producer)

def get_status_service(
    store: DataStore = Depends(get_store),
    redis: RedisClient = Depends(get_redis),
) -> OrderStatusService:
    return OrderStatusService(store, cache=redis)

@router.post(
    "/",
    response_model=OrderCreatedResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
    },
)
async def create_order(
    request: Request,
    order_in: OrderCreate,
    x_user_id: Optional[str] = Header(default=None),
    orders: OrderService = Depends(get_order_service),
    redis: RedisClient = Depends(get_redis)
):
    # 1. Rate Limiting
    client_ip = request.client.host if request.client else "unknown"
    allowed = await redis.check_rate_limit(
        client_ip,
        limit=settings.API_RATE_LIMIT_REQUESTS,
        window=settings.API_RATE_LIMIT_WINDOW_SECONDS
    )
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests"
        )

    # 2. Verify stock, persist the order, reserve stock
    placement = await orders.create_order(order_in, user_id=x_user_id)
    return OrderCreatedResponse(order_number=placement.order_number, order_id=placement.order_id)

@router.get("/", response_model=List[OrderSummaryResponse])
async def list_orders(
    x_user_id: Optional[str] = Header(default=None),
    orders: OrderService = Depends(get_order_service),
):
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Sign in to view orders")
    return await orders.list_orders(x_user_id)

# Registered before /{order_number} so "update-status" is not read as an order number
@router.api_route("/update-status", methods=["GET", "POST"], response_model=StatusSweepResponse)
async def update_order_statuses(statuses: OrderStatusService = Depends(get_status_service)):
    result = await statuses.sweep()
    if result.updated_count == 0:
        message = "No orders need status updates"
    else:
        message = f"Updated {result.updated_count} order(s)"
    return StatusSweepResponse(updated_count=result.updated_count, message=message)

@router.post("/{order_number}/status")
async def refresh_order_status(
    order_number: str,
    statuses: OrderStatusService = Depends(get_status_service),
):
    current = await statuses.advance(order_number)
    if current is None:
        raise OrderNotFoundError(order_number)
    return {"orderNumber": order_number, "status": current}

@router.get("/{order_number}", response_model=OrderResponse, responses={404: {"model": ErrorResponse}})
async def get_order(
    order_number: str,
    orders: OrderService = Depends(get_order_service),
    redis: RedisClient = Depends(get_redis)
):
    # 1. Check Cache
    cached_order = await redis.get_cached_order(order_number)
    if cached_order:
        return cached_order

    # 2. Fetch from DB
    order = await orders.get_order(order_number)
    if not order:
        raise OrderNotFoundError(order_number)

    # 3. Cache Result
    response_model = OrderResponse.model_validate(order)
    await redis.set_cached_order(order_number, jsonable_encoder(response_model))

    return response_model
