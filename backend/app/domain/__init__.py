"""
Domain Layer - Business Entities

This layer contains Pydantic models representing business entities.
These models enforce type safety and validation across the application.
"""
from app.domain.store import Store, Membership
from app.domain.user import User
from app.domain.product import Product, ProductVariant
from app.domain.category import Category, CategoryNode
from app.domain.brand import Brand
from app.domain.attribute import Attribute
from app.domain.order import Order, OrderItem
from app.domain.payment import Payment
from app.domain.audit import AuditLog
from app.domain.export_job import ExportJob

__all__ = [
    'Store', 'Membership', 'User', 'Product', 'ProductVariant', 'Category', 'CategoryNode',
    'Brand', 'Attribute', 'Order', 'OrderItem', 'Payment', 'AuditLog', 'ExportJob',
]
