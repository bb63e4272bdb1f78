class StorefrontError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    error = "Storefront error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.error, "message": self.message}

class ValidationError(StorefrontError):
    status_code = 422
    error = "Invalid order"

class TotalsMismatchError(ValidationError):
    error = "Invalid order totals"

class InsufficientStockError(StorefrontError):
    status_code = 400
    error = "Insufficient stock"

    def __init__(self, product_name: str, available: int, requested: int):
        super().__init__(
            f"Not enough stock available for {product_name}. "
            f"Available: {available}, Requested: {requested}"
        )
        self.product_name = product_name
        self.available = available
        self.requested = requested

class ProductNotFoundError(StorefrontError):
    status_code = 404
    error = "Product not found"

    def __init__(self, product_id: str):
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id

class OrderNotFoundError(StorefrontError):
    status_code = 404
    error = "Order not found"

    def __init__(self, order_number: str):
        super().__init__(f"Order {order_number} not found")
        self.order_number = order_number

class OrderPersistError(StorefrontError):
    error = "Failed to create order"

class UnknownTableError(StorefrontError):
    error = "Unknown table"

    def __init__(self, table: str):
        super().__init__(f"No such table: {table}")
        self.table = table
