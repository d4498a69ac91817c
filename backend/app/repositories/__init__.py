"""
Repository Layer - Data Access

This layer handles all database queries and returns domain models.
Repositories abstract away SQL details from business logic.
"""
from app.repositories.store_repository import StoreRepository
from app.repositories.user_repository import UserRepository
from app.repositories.user_store_repository import UserStoreRepository
from app.repositories.product_repository import ProductRepository
from app.repositories.category_repository import CategoryRepository
from app.repositories.brand_repository import BrandRepository
from app.repositories.attribute_repository import AttributeRepository
from app.repositories.order_repository import OrderRepository
from app.repositories.payment_repository import PaymentRepository
from app.repositories.audit_log_repository import AuditLogRepository
from app.repositories.export_job_repository import ExportJobRepository

__all__ = [
    'StoreRepository',
    'UserRepository',
    'UserStoreRepository',
    'ProductRepository',
    'CategoryRepository',
    'BrandRepository',
    'AttributeRepository',
    'OrderRepository',
    'PaymentRepository',
    'AuditLogRepository',
    'ExportJobRepository',
]
