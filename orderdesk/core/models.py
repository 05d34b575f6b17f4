from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from datetime import datetime, date
from decimal import Decimal

from orderdesk.core.status import OrderStatus


class OrderItemCreate(BaseModel):
    product_id: int
    # range checks happen in OrderFactory so they surface as ValidationError
    quantity: int


class OrderHeader(BaseModel):
    user_id: int
    customer_name: str
    customer_phone: Optional[str] = None
    delivery_address: str
    delivery_notes: Optional[str] = None


class ProductInfo(BaseModel):
    id: int
    name: str
    code: str
    category_code: str
    full_code: str
    price: Decimal
    stock_quantity: int
    is_active: bool

    class Config:
        from_attributes = True


class OrderItemResponse(BaseModel):
    id: int
    product_id: int
    product_name: str
    product_code: str
    category_code: str
    full_code: str
    price: Decimal
    quantity: int
    subtotal: Decimal
    current_product_name: Optional[str] = None
    image_url: Optional[str] = None

    class Config:
        from_attributes = True


class OrderSummary(BaseModel):
    id: int
    order_number: str
    user_id: int
    customer_name: str
    customer_phone: Optional[str] = None
    total_amount: Decimal
    status: OrderStatus
    created_at: datetime
    items_count: int = 0

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: int
    order_number: str
    user_id: int
    customer_name: str
    customer_phone: Optional[str] = None
    user_phone: Optional[str] = None
    total_amount: Decimal
    delivery_address: str
    delivery_notes: Optional[str] = None
    status: OrderStatus
    admin_notes: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    confirmed_by: Optional[int] = None
    confirmed_by_name: Optional[str] = None
    shipped_at: Optional[datetime] = None
    shipped_by: Optional[int] = None
    shipped_by_name: Optional[str] = None
    delivered_at: Optional[datetime] = None
    delivered_by: Optional[int] = None
    delivered_by_name: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []

    class Config:
        from_attributes = True


class StatusHistoryResponse(BaseModel):
    id: int
    order_id: int
    old_status: Optional[OrderStatus] = None
    new_status: OrderStatus
    changed_by: Optional[int] = None
    changed_by_name: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class OrderFilters(BaseModel):
    status: Optional[OrderStatus] = None
    user_id: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    search: Optional[str] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class OrderPage(BaseModel):
    orders: List[OrderSummary]
    pagination: Pagination


class OrderStatistics(BaseModel):
    total_orders: int = 0
    status_counts: Dict[str, int] = Field(default_factory=dict)
    total_revenue: Decimal = Decimal("0")
    average_order_value: Decimal = Decimal("0")
    unique_customers: int = 0


class DailyTrendPoint(BaseModel):
    day: date
    orders: int
    revenue: Decimal


class TopProduct(BaseModel):
    product_id: int
    product_name: str
    full_code: str
    quantity_sold: int
    revenue: Decimal


class TopCustomer(BaseModel):
    user_id: int
    customer_name: str
    orders: int
    total_spent: Decimal


class FulfillmentMetrics(BaseModel):
    total_orders: int = 0
    delivered_orders: int = 0
    cancelled_orders: int = 0
    avg_confirmation_time_hours: float = 0.0
    avg_shipping_time_hours: float = 0.0
    avg_delivery_time_hours: float = 0.0
    avg_total_fulfillment_time_hours: float = 0.0
    delivery_success_rate: float = 0.0
    cancellation_rate: float = 0.0
