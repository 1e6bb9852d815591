from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Index, func
from sqlalchemy.orm import relationship
from datetime import datetime
from app.db.base_class import Base


class CartItem(Base):
    """One (product, color, size) line of a user's cart."""
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)

    # Variant selectors, NULL means "not chosen"
    color = Column(String(50), nullable=True)
    size = Column(String(20), nullable=True)

    quantity = Column(Integer, default=1, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="cart_items")
    product = relationship("Product", back_populates="cart_items")


# One line per (user, product, color, size); NULL variants collide with each other
Index(
    'uq_cart_items_user_product_variant',
    CartItem.user_id,
    CartItem.product_id,
    func.coalesce(CartItem.color, ''),
    func.coalesce(CartItem.size, ''),
    unique=True,
)
