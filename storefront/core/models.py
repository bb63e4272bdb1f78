from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from decimal import Decimal

class OrderItemCreate(BaseModel):
    product_id: str = Field(alias="id", min_length=1)
    name: str
    price: Decimal = Field(ge=0)
    quantity: int = Field(gt=0)
    image_url: Optional[str] = Field(default=None, alias="imageUrl")

    class Config:
        populate_by_name = True

class ShippingInfo(BaseModel):
    # Address fields are free-form; only the contact email is required
    email: str = Field(min_length=3)

    class Config:
        extra = "allow"

class OrderCreate(BaseModel):
    items: List[OrderItemCreate] = Field(min_length=1)
    shipping_info: ShippingInfo = Field(alias="shippingInfo")
    billing_info: Optional[Dict[str, Any]] = Field(default=None, alias="billingInfo")
    subtotal: Decimal = Field(ge=0)
    shipping_cost: Decimal = Field(ge=0, alias="shippingCost")
    total: Decimal = Field(ge=0)

    class Config:
        populate_by_name = True

class OrderCreatedResponse(BaseModel):
    success: bool = True
    order_number: str = Field(alias="orderNumber")
    order_id: str = Field(alias="orderId")

    class Config:
        populate_by_name = True

class OrderLineResponse(BaseModel):
    product_id: str
    name: str
    price: Decimal
    quantity: int
    image_url: Optional[str] = None

class OrderResponse(BaseModel):
    id: str
    order_number: str
    user_id: Optional[str] = None
    customer_email: str
    shipping_info: Dict[str, Any]
    billing_info: Dict[str, Any]
    order_items: List[OrderLineResponse]
    subtotal: Decimal
    shipping_cost: Decimal
    total: Decimal
    status: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

class OrderSummaryResponse(BaseModel):
    id: str
    order_number: str
    total: Decimal
    status: str
    created_at: datetime

    class Config:
        from_attributes = True

class StatusSweepResponse(BaseModel):
    success: bool = True
    updated_count: int = Field(alias="updatedCount")
    message: str

    class Config:
        populate_by_name = True

class ErrorResponse(BaseModel):
    error: str
    message: Optional[str] = None
