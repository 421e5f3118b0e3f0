"""
Product Domain Model

Represents a catalog product as imported from SIIGO.

Author: Equipo Gestión de Pedidos
Date: 2025-09-03
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import datetime
from decimal import Decimal


class Product(BaseModel):
    """
    Product domain model - one row of the products table

    Fields:
        id: Internal product ID (primary key)
        product_name: Product name
        barcode: Real barcode from SIIGO or a generated temporary one
        internal_code: SIIGO product code (SKU)
        category: SIIGO account group name
        standard_price: First price of the first SIIGO price list
        siigo_id: SIIGO product UUID (or code for legacy rows)
        available_quantity: Stock reported by SIIGO
        is_active: Whether SIIGO reports the product as active
        last_sync_at: Last time stock was checked against SIIGO
        stock_updated_at: Last time the stock value changed
    """

    id: int = Field(..., description="Internal product ID")
    product_name: str = Field(..., description="Product name")
    barcode: Optional[str] = Field(None, description="Barcode (real or temporary)")
    internal_code: Optional[str] = Field(None, description="SIIGO product code")
    category: Optional[str] = Field(None, description="Product category")
    description: Optional[str] = Field(None, description="Product description")
    standard_price: Decimal = Field(Decimal('0'), description="Standard sale price", ge=0)

    siigo_product_id: Optional[str] = Field(None, description="SIIGO code kept for legacy lookups")
    siigo_id: Optional[str] = Field(None, description="SIIGO product id")
    available_quantity: int = Field(0, description="Available stock in SIIGO")
    stock: Optional[int] = Field(None, description="Local stock snapshot")
    is_active: bool = Field(True, description="Active in SIIGO")

    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")
    last_sync_at: Optional[datetime] = Field(None, description="Last stock check against SIIGO")
    stock_updated_at: Optional[datetime] = Field(None, description="Last stock change")

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_out_of_stock(self) -> bool:
        return self.available_quantity <= 0

    def to_dict(self) -> dict:
        """Convert to dictionary with Decimal to float conversion"""
        data = self.model_dump()
        data['standard_price'] = float(self.standard_price)
        return data
