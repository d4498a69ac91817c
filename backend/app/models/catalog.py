"""
Catalog models: products, variants, categories, brands, attributes
"""
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, DECIMAL, ForeignKey, UniqueConstraint
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base


class Category(Base):
    __tablename__ = "categories"
    __table_args__ = (
        UniqueConstraint("store_id", "slug", name="uq_categories_store_slug"),
    )

    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_id = Column(Integer, ForeignKey("categories.id"), index=True)

    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False)
    description = Column(Text)
    image_url = Column(String(500))
    sort_order = Column(Integer, default=0)
    is_published = Column(Boolean, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True))

    parent = relationship("Category", remote_side=[id])


class Brand(Base):
    __tablename__ = "brands"
    __table_args__ = (
        UniqueConstraint("store_id", "slug", name="uq_brands_store_slug"),
    )

    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False)
    description = Column(Text)
    logo_url = Column(String(500))
    website_url = Column(String(500))
    is_published = Column(Boolean, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True))


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        UniqueConstraint("store_id", "slug", name="uq_products_store_slug"),
        UniqueConstraint("store_id", "sku", name="uq_products_store_sku"),
    )

    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), index=True)
    brand_id = Column(Integer, ForeignKey("brands.id"), index=True)

    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False)
    sku = Column(String(100), nullable=False)
    description = Column(Text)
    short_description = Column(String(500))

    # Pricing
    price = Column(DECIMAL(10, 2), nullable=False)
    compare_at_price = Column(DECIMAL(10, 2))
    cost_price = Column(DECIMAL(10, 2))

    # Inventory
    track_inventory = Column(Boolean, default=True)
    inventory_qty = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Integer, default=5)
    weight = Column(DECIMAL(10, 3))

    # DRAFT, PUBLISHED, ARCHIVED
    status = Column(String(20), nullable=False, default="DRAFT", index=True)
    is_featured = Column(Boolean, default=False)
    tags = Column(JSONB, default=list)
    images = Column(JSONB, default=list)
    meta_title = Column(String(255))
    meta_description = Column(String(500))
    published_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True), index=True)

    category = relationship("Category")
    brand = relationship("Brand")
    variants = relationship("ProductVariant", back_populates="product", cascade="all, delete-orphan")
    attributes = relationship("ProductAttribute", back_populates="product", cascade="all, delete-orphan")


class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    sku = Column(String(100), nullable=False)
    price = Column(DECIMAL(10, 2))
    inventory_qty = Column(Integer, nullable=False, default=0)
    options = Column(JSONB, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    deleted_at = Column(DateTime(timezone=True))

    product = relationship("Product", back_populates="variants")


class Attribute(Base):
    """
    Store-defined attribute with its allowed values, e.g. Color: [Red, Blue]
    """
    __tablename__ = "attributes"
    __table_args__ = (
        UniqueConstraint("store_id", "name", name="uq_attributes_store_name"),
    )

    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    values = Column(JSONB, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ProductAttribute(Base):
    __tablename__ = "product_attributes"
    __table_args__ = (
        UniqueConstraint("product_id", "attribute_id", name="uq_product_attributes_product_attribute"),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    attribute_id = Column(Integer, ForeignKey("attributes.id", ondelete="CASCADE"), nullable=False, index=True)
    value = Column(String(255), nullable=False)

    product = relationship("Product", back_populates="attributes")
    attribute = relationship("Attribute")
