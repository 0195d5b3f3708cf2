"""
SQLAlchemy models used by the dropship integration.
"""
from app.models.cj_config import CJConfig
from app.models.product import Product, ProductVariant, CJ_SOURCE

__all__ = [
    "CJConfig",
    "Product",
    "ProductVariant",
    "CJ_SOURCE",
]
