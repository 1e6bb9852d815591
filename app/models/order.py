from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Enum, Text, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from app.db.base_class import Base


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMethod(str, enum.Enum):
    COD = "COD"
    BANK_TRANSFER = "BANK_TRANSFER"
    CREDIT_CARD = "CREDIT_CARD"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    # Pricing
    subtotal = Column(Numeric(18, 2), nullable=False)
    discount_amount = Column(Numeric(18, 2), default=0, nullable=False)
    promotion_code = Column(String(50), nullable=True)
    total_amount = Column(Numeric(18, 2), nullable=False)

    status = Column(Enum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True)
    payment_method = Column(Enum(PaymentMethod), default=PaymentMethod.COD, nullable=False)

    # Delivery
    shipping_address = Column(String(255), nullable=False)
    phone = Column(String(20), nullable=False)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id")
    status_history = relationship("OrderStatusHistory", back_populates="order", cascade="all, delete-orphan", order_by="OrderStatusHistory.id")


class OrderItem(Base):
    """Snapshot of a cart line at purchase time. Never updated."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)

    product_name = Column(String(200), nullable=False)  # Snapshot at order time
    color = Column(String(50), nullable=True)
    size = Column(String(20), nullable=True)

    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(18, 2), nullable=False)  # Unit price after product discount

    # Relationships
    order = relationship("Order", back_populates="items")
    product = relationship("Product")


Index('ix_orders_user_created_at', Order.user_id, Order.created_at)
Index('ix_orders_status_created_at', Order.status, Order.created_at)
Index('ix_order_items_order_id', OrderItem.order_id)
