"""
库存仓储实现

每次调整都是单条 UPDATE ... SET stock_available = stock_available ± n，
扣减额外带 stock_available >= n 条件，命中与否由 rowcount 判断。
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.inventory.entity import (
    BundleComponent,
    Product,
    ProductType,
    ProductVariant,
)
from domain.inventory.repository import InventoryRepository
from infrastructure.models.inventory import ProductModel, ProductVariantModel


class SQLAlchemyInventoryRepository(InventoryRepository):
    """库存仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _product_to_entity(self, model: ProductModel) -> Product:
        return Product(
            id=model.id,
            sku=model.sku,
            name=model.name,
            product_type=ProductType(model.product_type),
            price=Decimal(str(model.price)),
            regular_price=Decimal(str(model.regular_price)),
            stock_available=model.stock_available,
            bundle_components=[
                BundleComponent(sku=c["sku"], qty=int(c.get("qty", 1)))
                for c in (model.bundle_components or [])
                if c.get("sku")
            ],
        )

    def _variant_to_entity(self, model: ProductVariantModel) -> ProductVariant:
        return ProductVariant(
            id=model.id,
            product_id=model.product_id,
            sku=model.sku,
            name=model.name,
            price=Decimal(str(model.price)),
            regular_price=Decimal(str(model.regular_price)),
            stock_available=model.stock_available,
        )

    async def get_product(self, product_id: int) -> Optional[Product]:
        result = await self.session.execute(
            select(ProductModel)
            .where(ProductModel.id == product_id)
            .execution_options(populate_existing=True)
        )
        db_product = result.scalar_one_or_none()
        return self._product_to_entity(db_product) if db_product else None

    async def get_variant(self, product_id: int, variant_id: str) -> Optional[ProductVariant]:
        result = await self.session.execute(
            select(ProductVariantModel)
            .where(
                ProductVariantModel.product_id == product_id,
                ProductVariantModel.id == variant_id,
            )
            .execution_options(populate_existing=True)
        )
        db_variant = result.scalar_one_or_none()
        return self._variant_to_entity(db_variant) if db_variant else None

    async def _adjust(self, model, criteria, delta: int) -> bool:
        stmt = update(model).where(*criteria)
        if delta < 0:
            stmt = stmt.where(model.stock_available >= -delta)
        result = await self.session.execute(
            stmt.values(stock_available=model.stock_available + delta)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def increment_product(self, product_id: int, quantity: int) -> bool:
        return await self._adjust(ProductModel, [ProductModel.id == product_id], quantity)

    async def increment_variant(self, product_id: int, variant_id: str, quantity: int) -> bool:
        return await self._adjust(
            ProductVariantModel,
            [ProductVariantModel.product_id == product_id, ProductVariantModel.id == variant_id],
            quantity,
        )

    async def increment_sku(self, sku: str, quantity: int) -> bool:
        return await self._adjust(ProductModel, [ProductModel.sku == sku], quantity)

    async def decrement_product(self, product_id: int, quantity: int) -> bool:
        return await self._adjust(ProductModel, [ProductModel.id == product_id], -quantity)

    async def decrement_variant(self, product_id: int, variant_id: str, quantity: int) -> bool:
        return await self._adjust(
            ProductVariantModel,
            [ProductVariantModel.product_id == product_id, ProductVariantModel.id == variant_id],
            -quantity,
        )

    async def decrement_sku(self, sku: str, quantity: int) -> bool:
        return await self._adjust(ProductModel, [ProductModel.sku == sku], -quantity)
