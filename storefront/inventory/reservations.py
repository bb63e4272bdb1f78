import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from storefront.data.models import utcnow
from storefront.data.store import DataStore

logger = logging.getLogger(__name__)

# Resolution order for the legacy stock column names
STOCK_FIELDS = ("stock", "stock_quantity")

class AdjustmentStatus(str, Enum):
    PENDING = "pending"
    APPLIED = "applied"
    CONFLICT = "conflict"

def tracked_stock_field(product: Mapping[str, Any]) -> Optional[str]:
    """Return the column holding this product's stock, or None if untracked."""
    for field_name in STOCK_FIELDS:
        if product.get(field_name) is not None:
            return field_name
    return None

@dataclass
class StockAdjustment:
    order_number: str
    product_id: str
    field_name: str
    quantity: int

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StockAdjustment":
        field_name = data["field_name"]
        if field_name not in STOCK_FIELDS:
            raise ValueError(f"Unknown stock field: {field_name}")
        quantity = int(data["quantity"])
        if quantity <= 0:
            raise ValueError(f"Adjustment quantity must be positive, got {quantity}")
        return cls(
            order_number=str(data["order_number"]),
            product_id=str(data["product_id"]),
            field_name=field_name,
            quantity=quantity,
        )

class StockLedger:
    """Applies stock adjustments at most once per (order, product)."""

    def __init__(self, store: DataStore):
        self._store = store

    async def apply(self, adjustment: StockAdjustment) -> AdjustmentStatus:
        """Record and apply one adjustment in a single transaction.

        The pending entry is claimed with a conditional update before stock is
        touched; the row lock that update takes serialises concurrent replays,
        and an entry that already reached a final status is returned untouched.
        """
        key = {
            "order_number": adjustment.order_number,
            "product_id": adjustment.product_id,
        }
        async with self._store.transaction() as tx:
            entry = await tx.get("stock_adjustments", key)
            if entry is not None and entry["status"] != AdjustmentStatus.PENDING.value:
                logger.info(
                    f"Stock adjustment for {adjustment.product_id} on order "
                    f"{adjustment.order_number} already {entry['status']}"
                )
                return AdjustmentStatus(entry["status"])
            if entry is None:
                await tx.insert(
                    "stock_adjustments",
                    {**adjustment.to_dict(), "status": AdjustmentStatus.PENDING.value},
                )

            claimed = await tx.update(
                "stock_adjustments",
                {"applied_at": utcnow()},
                {**key, "status": AdjustmentStatus.PENDING.value},
            )
            if not claimed:
                settled = await tx.get("stock_adjustments", key)
                logger.info(
                    f"Stock adjustment for {adjustment.product_id} on order "
                    f"{adjustment.order_number} settled concurrently as {settled['status']}"
                )
                return AdjustmentStatus(settled["status"])

            applied = await tx.decrement(
                "products",
                adjustment.field_name,
                adjustment.quantity,
                {"id": adjustment.product_id},
            )
            status = AdjustmentStatus.APPLIED if applied else AdjustmentStatus.CONFLICT
            await tx.update(
                "stock_adjustments",
                {"status": status.value},
                key,
            )

        if status is AdjustmentStatus.CONFLICT:
            logger.warning(
                f"Stock for product {adjustment.product_id} fell below "
                f"{adjustment.quantity} before order {adjustment.order_number} "
                "could reserve it; needs manual reconciliation"
            )
        return status

    async def record_pending(self, adjustment: StockAdjustment) -> None:
        """Insert a pending ledger entry if none exists yet."""
        key = {
            "order_number": adjustment.order_number,
            "product_id": adjustment.product_id,
        }
        async with self._store.transaction() as tx:
            if await tx.get("stock_adjustments", key) is None:
                await tx.insert(
                    "stock_adjustments",
                    {**adjustment.to_dict(), "status": AdjustmentStatus.PENDING.value},
                )
