"""
商品与库存数据库模型（目录由其他子系统维护，这里只映射需要的列）
"""
from sqlalchemy import Column, Integer, String, Numeric, JSON, ForeignKey, CheckConstraint

from .base import Base


class ProductModel(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String(100), unique=True, index=True, nullable=True, comment="SKU")
    name = Column(String(255), nullable=False, comment="名称")
    product_type = Column(String(20), nullable=False, default="simple", comment="simple/configurable/bundle")
    price = Column(Numeric(precision=15, scale=2), nullable=False, comment="售价")
    regular_price = Column(Numeric(precision=15, scale=2), nullable=False, comment="原价")
    stock_available = Column(Integer, nullable=False, default=0, comment="可用库存")
    # [{"sku": "...", "qty": 1}, ...]
    bundle_components = Column(JSON, nullable=True, comment="组合商品子SKU")

    __table_args__ = (
        CheckConstraint("stock_available >= 0", name="ck_products_stock_non_negative"),
    )


class ProductVariantModel(Base):
    __tablename__ = "product_variants"

    id = Column(String(64), primary_key=True)
    product_id = Column(
        Integer,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sku = Column(String(100), nullable=True, index=True, comment="SKU")
    name = Column(String(255), nullable=False, comment="名称")
    price = Column(Numeric(precision=15, scale=2), nullable=False, comment="售价")
    regular_price = Column(Numeric(precision=15, scale=2), nullable=False, comment="原价")
    stock_available = Column(Integer, nullable=False, default=0, comment="可用库存")

    __table_args__ = (
        CheckConstraint("stock_available >= 0", name="ck_variants_stock_non_negative"),
    )
