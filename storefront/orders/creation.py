import logging
import secrets
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from storefront.core.config import settings
from storefront.core.errors import (
    InsufficientStockError,
    OrderPersistError,
    ProductNotFoundError,
    TotalsMismatchError,
)
from storefront.core.models import OrderCreate
from storefront.data.store import DataStore
from storefront.inventory.reservations import (
    StockAdjustment,
    StockLedger,
    tracked_stock_field,
)
from storefront.orders.status import OrderStatus

logger = logging.getLogger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"

def generate_order_number() -> str:
    """Return ``ORD-<epoch millis>-<7 random base36 chars>``.

    No uniqueness check is made against the database; the unique constraint
    on ``orders.order_number`` rejects the rare collision.
    """
    suffix = "".join(secrets.choice(_BASE36) for _ in range(7))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"

def verify_totals(order_in: OrderCreate, tolerance: Decimal) -> None:
    items_total = sum(
        (item.price * item.quantity for item in order_in.items), Decimal("0")
    )
    if abs(items_total - order_in.subtotal) > tolerance:
        raise TotalsMismatchError(
            f"Subtotal {order_in.subtotal} does not match line items total {items_total}"
        )
    expected_total = order_in.subtotal + order_in.shipping_cost
    if abs(expected_total - order_in.total) > tolerance:
        raise TotalsMismatchError(
            f"Total {order_in.total} does not equal subtotal plus shipping ({expected_total})"
        )

@dataclass
class OrderPlacement:
    order_number: str
    order_id: str

class OrderService:
    def __init__(self, store: DataStore, producer=None, verify: Optional[bool] = None):
        self._store = store
        self._ledger = StockLedger(store)
        self._producer = producer
        self._verify = settings.VERIFY_ORDER_TOTALS if verify is None else verify

    async def create_order(self, order_in: OrderCreate, user_id: Optional[str] = None) -> OrderPlacement:
        if self._verify:
            verify_totals(order_in, settings.ORDER_TOTALS_TOLERANCE)

        order_number = generate_order_number()
        reservations = await self._check_stock(order_in)

        shipping_info = order_in.shipping_info.model_dump()
        order_items = [
            {
                "product_id": item.product_id,
                "name": item.name,
                "price": float(item.price),
                "quantity": item.quantity,
                "image_url": item.image_url,
            }
            for item in order_in.items
        ]

        try:
            order = await self._store.insert(
                "orders",
                {
                    "order_number": order_number,
                    "user_id": user_id,
                    "customer_email": order_in.shipping_info.email,
                    "shipping_info": shipping_info,
                    "billing_info": order_in.billing_info or dict(shipping_info),
                    "order_items": order_items,
                    "subtotal": order_in.subtotal,
                    "shipping_cost": order_in.shipping_cost,
                    "total": order_in.total,
                    "status": OrderStatus.PENDING.value,
                },
            )
        except SQLAlchemyError as exc:
            logger.error(f"Error creating order {order_number}: {exc}")
            raise OrderPersistError(str(getattr(exc, "orig", None) or exc)) from exc

        logger.info(
            f"Created order {order_number} with {len(order_items)} line(s), total {order_in.total}"
        )

        for product_id, (field_name, quantity) in reservations.items():
            await self._reserve(
                StockAdjustment(
                    order_number=order_number,
                    product_id=product_id,
                    field_name=field_name,
                    quantity=quantity,
                )
            )

        await self._publish_created(order, order_items)
        return OrderPlacement(order_number=order_number, order_id=str(order["id"]))

    async def _check_stock(self, order_in: OrderCreate) -> Dict[str, tuple]:
        """Verify every tracked line item can be filled.

        Returns the quantity to reserve per product, keyed by product id, with
        the stock column it lives in. Quantities of repeated products are
        summed before comparing against stock.
        """
        reservations: Dict[str, tuple] = {}
        for item in order_in.items:
            product = await self._store.get("products", {"id": item.product_id})
            if product is None:
                raise ProductNotFoundError(item.product_id)

            field_name = tracked_stock_field(product)
            if field_name is None:
                logger.warning(
                    f"Product {item.product_id} ({item.name}) does not have a stock field. "
                    "Skipping stock update."
                )
                continue

            current_stock = int(product[field_name])
            _, already = reservations.get(item.product_id, (field_name, 0))
            requested = already + item.quantity
            if current_stock < requested:
                raise InsufficientStockError(item.name, current_stock, requested)
            reservations[item.product_id] = (field_name, requested)
        return reservations

    async def _reserve(self, adjustment: StockAdjustment) -> None:
        try:
            await self._ledger.apply(adjustment)
        except Exception as exc:
            logger.error(
                f"Failed to update stock for product {adjustment.product_id} "
                f"on order {adjustment.order_number}: {exc}"
            )
            await self._defer(adjustment)

    async def _defer(self, adjustment: StockAdjustment) -> None:
        try:
            await self._ledger.record_pending(adjustment)
        except Exception as exc:
            logger.error(f"Could not record pending stock adjustment: {exc}")

        if self._producer is None:
            logger.error(
                f"No event producer; stock adjustment for {adjustment.product_id} "
                f"on order {adjustment.order_number} left for manual reconciliation"
            )
            return
        try:
            await self._producer.publish_stock_adjustment(adjustment.to_dict())
        except Exception as exc:
            logger.error(
                f"Failed to queue stock adjustment for {adjustment.product_id} "
                f"on order {adjustment.order_number}: {exc}"
            )

    async def _publish_created(self, order: dict, order_items: List[dict]) -> None:
        if self._producer is None:
            return
        try:
            await self._producer.publish_order_created(
                {
                    "order_id": str(order["id"]),
                    "order_number": order["order_number"],
                    "user_id": order["user_id"],
                    "items": order_items,
                    "total": float(order["total"]),
                }
            )
        except Exception as exc:
            logger.error(f"Failed to publish OrderCreated for {order['order_number']}: {exc}")

    async def get_order(self, order_number: str) -> Optional[dict]:
        return await self._store.get("orders", {"order_number": order_number})

    async def list_orders(self, user_id: str) -> List[dict]:
        return await self._store.query(
            "orders", {"user_id": user_id}, order_by="created_at", descending=True
        )
