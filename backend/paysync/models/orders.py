"""
Pydantic Order Models

Domain views of orders, products and customers, plus the request bodies of
the public order endpoints. API payloads are camelCase.
"""
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, AliasChoices, ConfigDict
from pydantic.alias_generators import to_camel


class OrderStatus(str, Enum):
    """Persisted order status. PROVISIONAL is PROCESSING with is_provisional=True."""
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


TERMINAL_STATUSES = (OrderStatus.COMPLETED, OrderStatus.FAILED, OrderStatus.REFUNDED)


class CamelModel(BaseModel):
    """Base for models exchanged with storefront clients."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class CustomerInfo(CamelModel):
    """Customer details captured at checkout."""
    customer_id: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None


class Product(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    price: int = Field(ge=0)
    currency: str = "usd"


class Order(CamelModel):
    """
    Order as stored.

    Invariants:
    - payment_reference unique across orders
    - is_provisional implies status == processing
    - amount and quantity never change after creation
    """
    id: int
    user_id: Optional[int] = None
    product_id: int
    payment_reference: str
    quantity: int = Field(gt=0)
    amount: int = Field(ge=0)
    currency: str
    status: OrderStatus
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    is_provisional: bool = False
    provisional_created_at: Optional[datetime] = None
    sync_attempts: int = 0
    last_sync_attempt: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_final(self) -> bool:
        return self.status in TERMINAL_STATUSES


class NewOrder(BaseModel):
    """Values for inserting an order row."""
    user_id: Optional[int] = None
    product_id: int
    payment_reference: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    amount: int = Field(ge=0)
    currency: str
    status: OrderStatus
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    is_provisional: bool = False
    provisional_created_at: Optional[datetime] = None


class StatusCount(CamelModel):
    """One row of sync statistics."""
    status: str
    is_provisional: bool
    count: int


# ============================================================================
# Request Bodies
# ============================================================================

class CreateProvisionalOrderRequest(CamelModel):
    """Body of POST /api/create-provisional-order."""
    payment_reference: str = Field(
        min_length=1,
        validation_alias=AliasChoices("paymentReference", "paymentIntentId", "payment_reference")
    )
    product_id: int
    quantity: int = Field(default=1, gt=0)
    customer_info: Optional[CustomerInfo] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "paymentReference": "pi_3Pabc123",
                "productId": 7,
                "quantity": 1,
                "customerInfo": {
                    "customerEmail": "buyer@example.com",
                    "customerName": "Ada Buyer"
                }
            }
        }
    )


class CreatePaymentIntentRequest(CamelModel):
    """Body of POST /api/create-payment-intent."""
    product_id: int
    quantity: int = Field(default=1, gt=0)
    customer_info: Optional[CustomerInfo] = None


class OrderDetails(CamelModel):
    """Order joined with its product and user for the order lookup endpoint."""
    order: Order
    product: Optional[Product] = None
    user_email: Optional[str] = None

    def to_response(self) -> dict:
        body = self.order.model_dump(mode="json", by_alias=True)
        body["product"] = self.product.model_dump(mode="json", by_alias=True) if self.product else None
        body["user"] = (
            {"id": self.order.user_id, "email": self.user_email}
            if self.order.user_id is not None else None
        )
        return body
