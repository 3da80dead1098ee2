"""
拆解操作幂等台账

台账与业务事务相互独立：每次读写都使用自己的短事务提交，
业务事务回滚不会影响台账记录。台账存储不可用时降级为"无幂等保护"继续执行。
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError
from sqlalchemy.orm import Session

from app.core.exceptions import InvalidInputError
from app.core.logging_config import get_logger
from app.models.disassemble_models import DisassembleOperation, OperationStatusEnum

logger = get_logger(__name__)

# 视为"台账存储不可用"的异常（表不存在、连接失败等）
LEDGER_UNAVAILABLE_ERRORS = (OperationalError, ProgrammingError)


class LedgerStatus(str, Enum):
    FRESH = "fresh"
    ALREADY_COMPLETED = "already_completed"
    ALREADY_PENDING = "already_pending"
    DEGRADED = "degraded"


@dataclass
class LedgerDecision:
    status: LedgerStatus
    result: Optional[Dict[str, Any]] = None

    @property
    def degraded(self) -> bool:
        return self.status == LedgerStatus.DEGRADED


class IdempotencyLedger:
    """基于 disassemble_operations 表的幂等台账"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def begin(self, token: str, asset_id: int, tenant_id: int, actor: str) -> LedgerDecision:
        """原子地"检查并登记"操作令牌

        - 不存在：插入 pending 记录，返回 FRESH
        - completed：返回缓存结果（重放）
        - pending：返回 ALREADY_PENDING（调用方应返回冲突）
        - failed：条件更新为 pending 后重新执行，并发重试只有一个能抢到
        """
        try:
            return self._begin(token, asset_id, tenant_id, actor)
        except LEDGER_UNAVAILABLE_ERRORS as exc:
            logger.warning(
                "Idempotency ledger unavailable, proceeding without idempotency: token=%s error=%s",
                token, exc,
            )
            return LedgerDecision(LedgerStatus.DEGRADED)

    def _begin(self, token: str, asset_id: int, tenant_id: int, actor: str) -> LedgerDecision:
        db = self.session_factory()
        try:
            db.add(DisassembleOperation(
                token=token,
                asset_id=asset_id,
                tenant_id=tenant_id,
                actor=actor,
                status=OperationStatusEnum.PENDING.value,
            ))
            try:
                db.commit()
                logger.info("Ledger entry created: token=%s asset_id=%s", token, asset_id)
                return LedgerDecision(LedgerStatus.FRESH)
            except IntegrityError:
                # 主键冲突：令牌已登记过
                db.rollback()

            record = db.get(DisassembleOperation, token)
            if record is None:
                return LedgerDecision(LedgerStatus.ALREADY_PENDING)

            if record.tenant_id != tenant_id or record.asset_id != asset_id:
                raise InvalidInputError(
                    "操作令牌已被其他资产的拆解请求使用，请生成新的令牌",
                    operation_token=token,
                )

            if record.status == OperationStatusEnum.COMPLETED.value:
                return LedgerDecision(LedgerStatus.ALREADY_COMPLETED, result=record.result)
            if record.status == OperationStatusEnum.PENDING.value:
                return LedgerDecision(LedgerStatus.ALREADY_PENDING)

            # failed：事务未提交过，允许用同一令牌重试
            claimed = (
                db.query(DisassembleOperation)
                .filter(
                    DisassembleOperation.token == token,
                    DisassembleOperation.status == OperationStatusEnum.FAILED.value,
                )
                .update(
                    {
                        DisassembleOperation.status: OperationStatusEnum.PENDING.value,
                        DisassembleOperation.actor: actor,
                        DisassembleOperation.error_message: None,
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
            if claimed == 1:
                logger.info("Ledger entry reclaimed after failure: token=%s", token)
                return LedgerDecision(LedgerStatus.FRESH)

            # 并发重试被其他请求抢先
            db.expire_all()
            record = db.get(DisassembleOperation, token)
            if record is not None and record.status == OperationStatusEnum.COMPLETED.value:
                return LedgerDecision(LedgerStatus.ALREADY_COMPLETED, result=record.result)
            return LedgerDecision(LedgerStatus.ALREADY_PENDING)
        finally:
            db.close()

    def complete(self, token: str, result: Dict[str, Any]) -> bool:
        """标记完成并缓存结果；返回 False 表示台账写入失败（业务事务已提交，不影响结果）"""
        return self._finish(
            token,
            {
                DisassembleOperation.status: OperationStatusEnum.COMPLETED.value,
                DisassembleOperation.result: result,
                DisassembleOperation.error_message: None,
                DisassembleOperation.completed_at: datetime.now(),
            },
            allowed_statuses=(OperationStatusEnum.PENDING.value, OperationStatusEnum.COMPLETED.value),
        )

    def fail(self, token: str, error: str) -> bool:
        """标记失败；失败的令牌可以再次 begin 重试"""
        return self._finish(
            token,
            {
                DisassembleOperation.status: OperationStatusEnum.FAILED.value,
                DisassembleOperation.error_message: (error or "")[:2000],
            },
            allowed_statuses=(OperationStatusEnum.PENDING.value,),
        )

    def _finish(self, token: str, values: Dict[Any, Any], allowed_statuses) -> bool:
        db = self.session_factory()
        try:
            updated = (
                db.query(DisassembleOperation)
                .filter(
                    DisassembleOperation.token == token,
                    DisassembleOperation.status.in_(allowed_statuses),
                )
                .update(values, synchronize_session=False)
            )
            db.commit()
            if updated != 1:
                logger.warning("Ledger entry not updated (unexpected status): token=%s", token)
            return updated == 1
        except LEDGER_UNAVAILABLE_ERRORS as exc:
            db.rollback()
            logger.error("Failed to update idempotency ledger: token=%s error=%s", token, exc)
            return False
        finally:
            db.close()

    def get(self, token: str) -> Optional[DisassembleOperation]:
        db = self.session_factory()
        try:
            record = db.get(DisassembleOperation, token)
            if record is not None:
                db.expunge(record)
            return record
        finally:
            db.close()
