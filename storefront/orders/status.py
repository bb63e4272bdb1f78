import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional

from storefront.core.config import settings
from storefront.data.store import DataStore

logger = logging.getLogger(__name__)

class OrderStatus(str, Enum):
    PENDING = "pending"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

OPEN_STATUSES = (OrderStatus.PENDING, OrderStatus.SHIPPED)

def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def hours_since(created_at: datetime, now: datetime) -> float:
    return (_as_utc(now) - _as_utc(created_at)) / timedelta(hours=1)

def next_status(
    status: str,
    created_at: datetime,
    now: datetime,
    ship_after: Optional[float] = None,
    deliver_after: Optional[float] = None,
) -> Optional[OrderStatus]:
    """Return the single transition due for an order, or None.

    At most one step is taken per call, so a pending order older than the
    delivery threshold still only ships.
    """
    if ship_after is None:
        ship_after = settings.ORDER_SHIP_AFTER_HOURS
    if deliver_after is None:
        deliver_after = settings.ORDER_DELIVER_AFTER_HOURS

    age = hours_since(created_at, now)
    if status == OrderStatus.PENDING and age >= ship_after:
        return OrderStatus.SHIPPED
    if status == OrderStatus.SHIPPED and age >= deliver_after:
        return OrderStatus.DELIVERED
    return None

@dataclass
class SweepResult:
    updated_count: int = 0
    order_numbers: List[str] = field(default_factory=list)

class OrderStatusService:
    def __init__(self, store: DataStore, cache=None):
        self._store = store
        self._cache = cache

    async def _transition(self, order: dict, new_status: OrderStatus, now: datetime) -> bool:
        # Compare-and-set on the observed status so external changes win
        updated = await self._store.update(
            "orders",
            {"status": new_status.value, "updated_at": now},
            {"id": order["id"], "status": order["status"]},
        )
        if not updated:
            logger.info(
                f"Order {order['order_number']} changed since it was read; skipping"
            )
            return False
        if self._cache is not None:
            await self._cache.invalidate_order(order["order_number"])
        return True

    async def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """Advance every open order that is due. Query failures propagate."""
        now = now or datetime.now(timezone.utc)
        orders = await self._store.query(
            "orders", {"status": [s.value for s in OPEN_STATUSES]}
        )

        result = SweepResult()
        for order in orders:
            new_status = next_status(order["status"], order["created_at"], now)
            if new_status is None:
                continue
            try:
                changed = await self._transition(order, new_status, now)
            except Exception as e:
                logger.error(f"Failed to update order {order['id']}: {e}")
                continue
            if changed:
                result.updated_count += 1
                result.order_numbers.append(order["order_number"])

        logger.info(f"Status sweep updated {result.updated_count} order(s)")
        return result

    async def advance(self, order_number: str, now: Optional[datetime] = None) -> Optional[str]:
        """Apply the due transition to one order and return its status."""
        now = now or datetime.now(timezone.utc)
        order = await self._store.get("orders", {"order_number": order_number})
        if order is None:
            return None

        new_status = next_status(order["status"], order["created_at"], now)
        if new_status is None:
            return order["status"]
        try:
            if await self._transition(order, new_status, now):
                return new_status.value
        except Exception as e:
            logger.error(f"Failed to update order {order['id']}: {e}")
        return order["status"]
