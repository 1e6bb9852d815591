from app.db.base_class import Base


# IMPORT ALL MODELS HERE (THIS REGISTERS THEM WITH Base.metadata)
from app.models.user import User
from app.models.category import Category
from app.models.product import Product
from app.models.cart import CartItem
from app.models.promotion import Promotion
from app.models.order import Order, OrderItem
from app.models.order_status_history import OrderStatusHistory
