"""
库存领域对象（商品目录拥有，这里仅读取定价与修改可用库存）
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, Optional


class ProductType(str, Enum):
    SIMPLE = "simple"
    CONFIGURABLE = "configurable"
    BUNDLE = "bundle"


@dataclass
class BundleComponent:
    sku: str
    qty: int = 1


@dataclass
class StockUnit:
    """一次库存调整：作用在商品或变体上的数量"""

    product_id: Optional[int]
    quantity: int
    variant_id: Optional[str] = None
    sku: Optional[str] = None  # 组合商品子SKU按 sku 定位

    @property
    def scope(self) -> str:
        if self.variant_id:
            return "variant"
        if self.product_id is None:
            return "sku"
        return "product"


@dataclass
class ProductVariant:
    id: str
    product_id: int
    sku: Optional[str]
    name: str
    price: Decimal
    regular_price: Decimal
    stock_available: int


@dataclass
class Product:
    id: int
    sku: Optional[str]
    name: str
    product_type: ProductType
    price: Decimal
    regular_price: Decimal
    stock_available: int
    bundle_components: List[BundleComponent] = field(default_factory=list)

    @property
    def is_bundle(self) -> bool:
        return self.product_type == ProductType.BUNDLE and bool(self.bundle_components)
