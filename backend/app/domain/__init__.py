"""
Domain Layer - Business Entities

Pydantic models for the entities the SIIGO integration reads and writes.
"""
from app.domain.product import Product

__all__ = ['Product']
