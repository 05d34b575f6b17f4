from datetime import datetime, timezone
from sqlalchemy import (
    Boolean, Column, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text,
)
from sqlalchemy.orm import relationship
from orderdesk.core.status import OrderStatus
from orderdesk.data.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _status_type():
    return Enum(
        OrderStatus,
        name="order_status",
        native_enum=False,
        length=20,
        values_callable=lambda enum: [member.value for member in enum],
    )


def _full_name(user):
    if user is None:
        return None
    return f"{user.first_name or ''} {user.last_name or ''}".strip() or None


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    first_name = Column(String(100), nullable=False, default="")
    last_name = Column(String(100), nullable=False, default="")
    phone_number = Column(String(32), nullable=True)

    @property
    def full_name(self):
        return _full_name(self)


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    code = Column(String(32), nullable=False)
    category_code = Column(String(32), nullable=False)
    full_code = Column(String(64), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    stock_quantity = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    image_url = Column(String(512), nullable=True)


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    order_number = Column(String(32), nullable=False, unique=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    customer_name = Column(String(255), nullable=False)
    customer_phone = Column(String(32), nullable=True)
    total_amount = Column(Numeric(12, 2), nullable=False)
    delivery_address = Column(Text, nullable=False)
    delivery_notes = Column(Text, nullable=True)
    status = Column(_status_type(), nullable=False, default=OrderStatus.PENDING, index=True)
    admin_notes = Column(Text, nullable=True)

    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    shipped_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    delivered_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    version = Column(Integer, nullable=False, default=1)

    items = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan",
        lazy="selectin", order_by="OrderItem.id",
    )
    customer = relationship("User", foreign_keys=[user_id], lazy="selectin")
    confirmed_by_user = relationship("User", foreign_keys=[confirmed_by], lazy="selectin")
    shipped_by_user = relationship("User", foreign_keys=[shipped_by], lazy="selectin")
    delivered_by_user = relationship("User", foreign_keys=[delivered_by], lazy="selectin")

    __mapper_args__ = {"version_id_col": version}

    @property
    def user_phone(self):
        return self.customer.phone_number if self.customer else None

    @property
    def confirmed_by_name(self):
        return _full_name(self.confirmed_by_user)

    @property
    def shipped_by_name(self):
        return _full_name(self.shipped_by_user)

    @property
    def delivered_by_name(self):
        return _full_name(self.delivered_by_user)

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    product_name = Column(String(255), nullable=False)
    product_code = Column(String(32), nullable=False)
    category_code = Column(String(32), nullable=False)
    full_code = Column(String(64), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    subtotal = Column(Numeric(12, 2), nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product", lazy="selectin")

    @property
    def current_product_name(self):
        return self.product.name if self.product else None

    @property
    def image_url(self):
        return self.product.image_url if self.product else None


class OrderStatusHistory(Base):
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    old_status = Column(_status_type(), nullable=True)
    new_status = Column(_status_type(), nullable=False)
    changed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    changed_by_user = relationship("User", lazy="selectin")

    @property
    def changed_by_name(self):
        return _full_name(self.changed_by_user)


class OrderNumberSequence(Base):
    __tablename__ = "order_number_sequences"

    day = Column(String(6), primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)
