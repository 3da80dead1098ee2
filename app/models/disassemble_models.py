"""
资产拆解 - 幂等台账模型
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, Index, func, JSON
from app.db.session import Base
import enum


class OperationStatusEnum(str, enum.Enum):
    """拆解操作状态"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class DisassembleOperation(Base):
    """拆解操作台账（以客户端提供的操作令牌为主键，只更新不删除）"""
    __tablename__ = "disassemble_operations"

    token = Column(String(100), primary_key=True, comment="客户端操作令牌")
    asset_id = Column(Integer, nullable=False, comment="目标资产ID")
    tenant_id = Column(Integer, nullable=False, comment="租户ID")
    actor = Column(String(100), comment="请求人")
    status = Column(String(20), nullable=False, default=OperationStatusEnum.PENDING.value, comment="状态：pending/completed/failed")
    result = Column(JSON, comment="缓存的执行结果（重放时原样返回）")
    error_message = Column(Text, comment="失败原因")
    completed_at = Column(DateTime, comment="完成时间")
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('idx_disassemble_ops_asset', 'asset_id'),
        Index('idx_disassemble_ops_status', 'status'),
    )
