"""
Product and variant models

Only the columns the dropship integration reads or writes are modelled here.
Products imported from CJ carry source="cj-dropshipping" and the provider pid;
each variant carries the provider vid used for stock and freight lookups.
"""
from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.core.utils import utcnow

CJ_SOURCE = "cj-dropshipping"


class Product(Base):
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, index=True)
    name = Column(String(500), nullable=False)
    price = Column(Numeric(12, 2), nullable=False, default=0)
    source = Column(String(50), nullable=True, index=True)

    # Dropship mapping
    cj_product_id = Column(String(64), nullable=True, index=True)
    origin_country_code = Column(String(2), nullable=True)

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    variants = relationship(
        "ProductVariant",
        back_populates="product",
        order_by="ProductVariant.position",
        cascade="all, delete-orphan",
    )


class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(String(36), primary_key=True, index=True)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, default=0)

    name = Column(String(500), nullable=True)
    sku = Column(String(120), nullable=True)
    cj_variant_id = Column(String(64), nullable=True, index=True)
    is_active = Column(Boolean, default=True)

    # Written by catalog stock sync
    stock = Column(Integer, default=0)
    stock_synced_at = Column(DateTime(timezone=True), nullable=True)

    product = relationship("Product", back_populates="variants")

    __table_args__ = (
        Index("ix_product_variants_product_position", "product_id", "position"),
    )
