"""
Database models (schema definition)
"""
from .store import Store
from .user import User, Role, UserStore
from .catalog import Category, Brand, Product, ProductVariant, Attribute, ProductAttribute
from .order import Customer, Order, OrderItem, Payment
from .audit import AuditLog, ExportJob

__all__ = [
    "Store",
    "User",
    "Role",
    "UserStore",
    "Category",
    "Brand",
    "Product",
    "ProductVariant",
    "Attribute",
    "ProductAttribute",
    "Customer",
    "Order",
    "OrderItem",
    "Payment",
    "AuditLog",
    "ExportJob",
]
