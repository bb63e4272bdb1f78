import json
import logging
import aio_pika
from storefront.core.config import settings
from storefront.data.store import DataStore, data_store
from storefront.inventory.reservations import StockAdjustment, StockLedger
from storefront.messaging.producer import (
    ATTEMPTS_HEADER,
    INVENTORY_EXCHANGE,
    STOCK_ADJUSTMENT_KEY,
    producer as default_producer,
)

logger = logging.getLogger(__name__)

class StockAdjustmentConsumer:
    """Applies stock adjustments that could not be written inline."""

    def __init__(self, store: DataStore = data_store, producer=default_producer, max_attempts: int = None):
        self.connection = None
        self._ledger = StockLedger(store)
        self._producer = producer
        self._max_attempts = max_attempts or settings.STOCK_ADJUSTMENT_MAX_ATTEMPTS

    async def connect(self):
        try:
            self.connection = await aio_pika.connect_robust(settings.RABBITMQ_URL)
            channel = await self.connection.channel()
            exchange = await channel.declare_exchange(
                INVENTORY_EXCHANGE, aio_pika.ExchangeType.TOPIC, durable=True
            )
            queue = await channel.declare_queue("stock_adjustments", durable=True)
            await queue.bind(exchange, routing_key=STOCK_ADJUSTMENT_KEY)

            # Start consuming
            await queue.consume(self.process_message)
            logger.info("Listening for StockAdjustmentRequested events...")
        except Exception as e:
            logger.error(f"Failed to connect to RabbitMQ consumer: {e}")

    async def process_message(self, message: aio_pika.IncomingMessage):
        async with message.process():
            try:
                body = json.loads(message.body)
            except ValueError as e:
                logger.error(f"Dropping undecodable message: {e}")
                return
            attempts = int((message.headers or {}).get(ATTEMPTS_HEADER, 0))
            await self.handle_event(body, attempts)

    async def handle_event(self, body: dict, attempts: int = 0):
        """Apply one StockAdjustmentRequested event, requeueing on failure."""
        if body.get("event_type") != "StockAdjustmentRequested":
            return
        payload = body.get("payload", {})
        try:
            adjustment = StockAdjustment.from_dict(payload)
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Dropping malformed stock adjustment {payload!r}: {e}")
            return

        try:
            status = await self._ledger.apply(adjustment)
            logger.info(
                f"Stock adjustment for {adjustment.product_id} on order "
                f"{adjustment.order_number}: {status.value}"
            )
        except Exception as e:
            attempts += 1
            if attempts >= self._max_attempts:
                logger.error(
                    f"Giving up on stock adjustment for {adjustment.product_id} on order "
                    f"{adjustment.order_number} after {attempts} attempts: {e}"
                )
                return
            logger.error(f"Stock adjustment failed (attempt {attempts}), requeueing: {e}")
            await self._producer.publish_stock_adjustment(adjustment.to_dict(), attempts=attempts)

consumer = StockAdjustmentConsumer()
