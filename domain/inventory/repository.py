"""
库存仓储接口

所有增减都必须是单条原子语句（UPDATE ... SET stock = stock ± n），
禁止“读-改-写”。
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Product, ProductVariant


class InventoryRepository(ABC):
    """库存仓储抽象接口"""

    @abstractmethod
    async def get_product(self, product_id: int) -> Optional[Product]:
        """获取商品（含组合配置）"""
        pass

    @abstractmethod
    async def get_variant(self, product_id: int, variant_id: str) -> Optional[ProductVariant]:
        """获取商品变体"""
        pass

    @abstractmethod
    async def increment_product(self, product_id: int, quantity: int) -> bool:
        """原子增加商品库存，返回是否命中"""
        pass

    @abstractmethod
    async def increment_variant(self, product_id: int, variant_id: str, quantity: int) -> bool:
        """原子增加变体库存，返回是否命中"""
        pass

    @abstractmethod
    async def increment_sku(self, sku: str, quantity: int) -> bool:
        """原子增加简单商品（按SKU）库存，返回是否命中"""
        pass

    @abstractmethod
    async def decrement_product(self, product_id: int, quantity: int) -> bool:
        """原子扣减商品库存（库存不足时不命中）"""
        pass

    @abstractmethod
    async def decrement_variant(self, product_id: int, variant_id: str, quantity: int) -> bool:
        """原子扣减变体库存（库存不足时不命中）"""
        pass

    @abstractmethod
    async def decrement_sku(self, sku: str, quantity: int) -> bool:
        """原子扣减简单商品（按SKU）库存（库存不足时不命中）"""
        pass
