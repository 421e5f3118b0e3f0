"""
Repository Layer - Data Access

This layer handles all database queries.
Repositories abstract away SQL details from the SIIGO services.
"""
from app.repositories.product_repository import ProductRepository
from app.repositories.order_repository import OrderRepository
from app.repositories.sync_log_repository import SyncLogRepository
from app.repositories.customer_repository import CustomerRepository
from app.repositories.webhook_repository import WebhookRepository

__all__ = [
    'ProductRepository',
    'OrderRepository',
    'SyncLogRepository',
    'CustomerRepository',
    'WebhookRepository',
]
