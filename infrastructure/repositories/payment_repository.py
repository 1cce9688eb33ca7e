"""
支付记录仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from core.logging_config import get_logger
from domain.payment.entity import PaymentRecord, PaymentRecordStatus
from domain.payment.repository import PaymentRecordRepository
from infrastructure.models.payment import PaymentRecordModel


logger = get_logger(__name__)


class SQLAlchemyPaymentRecordRepository(PaymentRecordRepository):
    """支付记录仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentRecordModel) -> PaymentRecord:
        """将数据库模型转换为领域实体"""
        return PaymentRecord(
            id=model.id,
            attempt_id=model.attempt_id,
            order_id=model.order_id,
            user_id=model.user_id,
            amount=model.amount,
            method=model.method,
            status=PaymentRecordStatus(model.status),
            gateway_transaction_id=model.gateway_transaction_id,
            gateway_order_id=model.gateway_order_id,
            gateway_response=model.gateway_response or {},
            failure_reason=model.failure_reason,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: PaymentRecord) -> PaymentRecordModel:
        """将领域实体转换为数据库模型"""
        now = datetime.now(timezone.utc)
        return PaymentRecordModel(
            id=entity.id,
            attempt_id=entity.attempt_id,
            order_id=entity.order_id,
            user_id=entity.user_id,
            amount=entity.amount,
            method=entity.method,
            status=entity.status.value,
            gateway_transaction_id=entity.gateway_transaction_id,
            gateway_order_id=entity.gateway_order_id,
            gateway_response=entity.gateway_response,
            failure_reason=entity.failure_reason,
            created_at=entity.created_at or now,
            updated_at=entity.updated_at or now,
        )

    async def create(self, record: PaymentRecord) -> PaymentRecord:
        """创建支付尝试记录"""
        try:
            db_record = self._to_model(record)
            self.session.add(db_record)
            await self.session.flush()
        except IntegrityError:
            logger.warning("payment_record_conflict", attempt_id=record.attempt_id)
            raise
        logger.info(
            "payment_record_created",
            attempt_id=db_record.attempt_id,
            order_id=db_record.order_id,
            status=db_record.status,
        )
        return self._to_entity(db_record)

    async def _get_one(self, query) -> Optional[PaymentRecord]:
        result = await self.session.execute(query.execution_options(populate_existing=True))
        db_record = result.scalars().first()
        return self._to_entity(db_record) if db_record else None

    async def get_latest_for_order(self, order_id: int) -> Optional[PaymentRecord]:
        """获取订单最近一次支付尝试"""
        return await self._get_one(
            select(PaymentRecordModel)
            .where(PaymentRecordModel.order_id == order_id)
            .order_by(PaymentRecordModel.id.desc())
            .limit(1)
        )

    async def list_for_order(self, order_id: int) -> List[PaymentRecord]:
        """获取订单全部支付尝试"""
        result = await self.session.execute(
            select(PaymentRecordModel)
            .where(PaymentRecordModel.order_id == order_id)
            .order_by(PaymentRecordModel.id.asc())
            .execution_options(populate_existing=True)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def attach_gateway_order(
        self, attempt_id: str, gateway_order_id: Optional[str], response: dict
    ) -> None:
        """记录网关下单结果"""
        await self.session.execute(
            update(PaymentRecordModel)
            .where(PaymentRecordModel.attempt_id == attempt_id)
            .values(
                gateway_order_id=gateway_order_id,
                gateway_response=response,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )

    async def settle_latest(
        self,
        order_id: int,
        status: PaymentRecordStatus,
        *,
        transaction_id: Optional[str] = None,
        response: Optional[dict] = None,
        failure_reason: Optional[str] = None,
        from_status: PaymentRecordStatus = PaymentRecordStatus.PENDING,
    ) -> bool:
        """条件更新：最近一次尝试仍为 from_status 时迁移到终态"""
        # 别名避免子查询被关联到 UPDATE 的目标表
        latest = aliased(PaymentRecordModel)
        latest_id = (
            select(latest.id)
            .where(latest.order_id == order_id)
            .order_by(latest.id.desc())
            .limit(1)
            .scalar_subquery()
        )
        values = {
            "status": status.value,
            "updated_at": datetime.now(timezone.utc),
        }
        if transaction_id is not None:
            values["gateway_transaction_id"] = transaction_id
        if response is not None:
            values["gateway_response"] = response
        if failure_reason is not None:
            values["failure_reason"] = failure_reason

        result = await self.session.execute(
            update(PaymentRecordModel)
            .where(
                PaymentRecordModel.id == latest_id,
                PaymentRecordModel.status == from_status.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        settled = result.rowcount == 1
        logger.debug(
            "payment_record_settle",
            order_id=order_id,
            status=status.value,
            settled=settled,
        )
        return settled
