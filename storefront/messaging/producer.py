import json
import logging
from datetime import datetime, timezone
from uuid import uuid4
import aio_pika
from storefront.core.config import settings

logger = logging.getLogger(__name__)

ORDERS_EXCHANGE = "orders"
INVENTORY_EXCHANGE = "inventory"
STOCK_ADJUSTMENT_KEY = "stock.adjustment"
ATTEMPTS_HEADER = "x-attempts"

class OrderEventProducer:
    def __init__(self):
        self.connection = None
        self.channel = None
        self.exchanges = {}

    async def connect(self):
        if not self.connection:
            try:
                connection = await aio_pika.connect_robust(settings.RABBITMQ_URL)
                self.channel = await connection.channel()
                for name in (ORDERS_EXCHANGE, INVENTORY_EXCHANGE):
                    self.exchanges[name] = await self.channel.declare_exchange(
                        name, aio_pika.ExchangeType.TOPIC, durable=True
                    )
                self.connection = connection
                logger.info("Connected to RabbitMQ for producing.")
            except Exception as e:
                logger.error(f"Failed to connect to RabbitMQ producer: {e}")
                raise

    async def close(self):
        if self.connection:
            await self.connection.close()

    async def _publish(self, exchange: str, routing_key: str, event_type: str, payload: dict, headers: dict = None):
        if exchange not in self.exchanges:
            await self.connect()

        event = {
            "event_type": event_type,
            "event_id": str(uuid4()),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "payload": payload
        }

        message = aio_pika.Message(
            body=json.dumps(event, default=str).encode(),
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            headers=headers or {}
        )

        await self.exchanges[exchange].publish(message, routing_key=routing_key)

    async def publish_order_created(self, order_data: dict):
        await self._publish(ORDERS_EXCHANGE, "order.created", "OrderCreated", order_data)
        logger.info(f"Published OrderCreated event for order {order_data.get('order_number')}")

    async def publish_stock_adjustment(self, adjustment: dict, attempts: int = 0):
        await self._publish(
            INVENTORY_EXCHANGE,
            STOCK_ADJUSTMENT_KEY,
            "StockAdjustmentRequested",
            adjustment,
            headers={ATTEMPTS_HEADER: attempts},
        )
        logger.info(
            f"Queued stock adjustment for product {adjustment.get('product_id')} "
            f"on order {adjustment.get('order_number')} (attempt {attempts + 1})"
        )

producer = OrderEventProducer()

async def get_producer():
    # Publishing is best-effort for callers; a broker outage must not block the request
    if not producer.connection:
        try:
            await producer.connect()
        except Exception:
            logger.warning("RabbitMQ unavailable; events will reconnect on publish")
    return producer
