from app.models.database import Base, SessionLocal, get_db
from app.models.user import User
from app.models.product import Product, ProductCombination
from app.models.order import Order, OrderItem

__all__ = [
    "Base",
    "SessionLocal",
    "get_db",
    "User",
    "Product",
    "ProductCombination",
    "Order",
    "OrderItem",
]
