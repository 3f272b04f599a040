"""Pydantic schemas for orders service."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.orders_service.models import (
    DeliveryAction,
    DeliveryStatus,
    FulfillmentType,
    OrderAction,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)

# ============================================================================
# ORDER SCHEMAS
# ============================================================================


class OrderItemIn(BaseModel):
    item_id: uuid.UUID
    # Range is enforced by the service so the error shape stays consistent
    quantity: int


class OrderCreate(BaseModel):
    branch_id: uuid.UUID
    fulfillment_type: FulfillmentType
    items: list[OrderItemIn]
    delivery_address: Optional[str] = Field(None, max_length=500)
    payment_method: Optional[PaymentMethod] = None
    notes: Optional[str] = Field(None, max_length=1000)


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    coffee_id: uuid.UUID
    item_name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class DeliveryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    branch_id: uuid.UUID
    agent_id: Optional[uuid.UUID] = None
    status: DeliveryStatus
    failure_reason: Optional[str] = None
    assigned_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    in_transit_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    payer_id: uuid.UUID
    amount: Decimal
    method: PaymentMethod
    status: PaymentStatus
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    created_at: datetime


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    customer_id: uuid.UUID
    branch_id: uuid.UUID
    fulfillment_type: FulfillmentType
    delivery_address: Optional[str] = None
    status: OrderStatus
    subtotal: Decimal
    delivery_fee: Decimal
    total_amount: Decimal
    preferred_payment_method: Optional[PaymentMethod] = None
    notes: Optional[str] = None
    accepted_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    items: list[OrderItemResponse] = []
    delivery: Optional[DeliveryResponse] = None
    payments: list[PaymentResponse] = []


class OrderListResponse(BaseModel):
    items: list[OrderResponse]
    total: int
    limit: int
    offset: int


class OrderActionRequest(BaseModel):
    action: OrderAction
    delivery_agent_id: Optional[uuid.UUID] = None
    reason: Optional[str] = Field(None, max_length=500)


# ============================================================================
# DELIVERY SCHEMAS
# ============================================================================


class DeliveryActionRequest(BaseModel):
    action: DeliveryAction
    reason: Optional[str] = Field(None, max_length=500)


# ============================================================================
# PAYMENT SCHEMAS
# ============================================================================


class PaymentCreate(BaseModel):
    order_id: uuid.UUID
    method: PaymentMethod


class PaymentResultResponse(BaseModel):
    success: bool
    message: str
    transaction_id: Optional[str] = None
    payment: PaymentResponse
