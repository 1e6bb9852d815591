from app.models.user import User, UserRole
from app.models.category import Category
from app.models.product import Product
from app.models.cart import CartItem
from app.models.promotion import Promotion, DiscountType
from app.models.order import Order, OrderItem, OrderStatus, PaymentMethod
from app.models.order_status_history import OrderStatusHistory
