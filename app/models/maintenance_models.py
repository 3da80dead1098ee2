"""
资产拆解 - 依附记录模型
工单、故障及解决方案、历史事件、库存批次安装、保养检查表、文档。
每条记录都通过可空的 asset_id / component_id 挂靠在资产或部件上。
"""

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey, Index, func, JSON
)
from sqlalchemy.orm import relationship
from app.db.session import Base


class WorkOrder(Base):
    """工单表"""
    __tablename__ = "work_orders"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, nullable=False, comment="租户ID")
    asset_id = Column(Integer, ForeignKey("assets.id"), nullable=True, comment="资产ID")
    component_id = Column(Integer, ForeignKey("components.id"), nullable=True, comment="部件ID")
    title = Column(String(200), nullable=False, comment="工单标题")
    status = Column(String(50), default="PENDING", comment="工单状态：PENDING/IN_PROGRESS/ON_HOLD/COMPLETED/CANCELLED")
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('idx_work_orders_asset', 'asset_id'),
        Index('idx_work_orders_component', 'component_id'),
        Index('idx_work_orders_status', 'status'),
    )


class FailureOccurrence(Base):
    """故障记录表"""
    __tablename__ = "failure_occurrences"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, nullable=False, comment="租户ID")
    asset_id = Column(Integer, ForeignKey("assets.id"), nullable=True, comment="资产ID")
    component_id = Column(Integer, ForeignKey("components.id"), nullable=True, comment="故障部件ID")
    title = Column(String(200), nullable=False, comment="故障标题")
    reported_at = Column(DateTime, server_default=func.now(), comment="报告时间")

    solutions = relationship("SolutionApplied", back_populates="failure_occurrence", passive_deletes=True)

    __table_args__ = (
        Index('idx_failures_asset', 'asset_id'),
        Index('idx_failures_component', 'component_id'),
    )


class SolutionApplied(Base):
    """故障解决方案表（部件引用可空，部件删除后保留解决记录）"""
    __tablename__ = "solutions_applied"

    id = Column(Integer, primary_key=True, index=True)
    failure_occurrence_id = Column(
        Integer, ForeignKey("failure_occurrences.id", ondelete="CASCADE"), nullable=False, comment="故障ID"
    )
    final_component_id = Column(Integer, ForeignKey("components.id"), nullable=True, comment="最终处理部件ID")
    final_subcomponent_id = Column(Integer, ForeignKey("components.id"), nullable=True, comment="最终处理子部件ID")
    description = Column(Text, comment="解决方案描述")
    created_at = Column(DateTime, server_default=func.now())

    failure_occurrence = relationship("FailureOccurrence", back_populates="solutions")

    __table_args__ = (
        Index('idx_solutions_failure', 'failure_occurrence_id'),
        Index('idx_solutions_component', 'final_component_id'),
        Index('idx_solutions_subcomponent', 'final_subcomponent_id'),
    )


class HistoryEvent(Base):
    """历史事件表（审计轨迹，由外部审计查看器只读消费）"""
    __tablename__ = "history_events"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, nullable=False, comment="租户ID")
    asset_id = Column(Integer, ForeignKey("assets.id"), nullable=True, comment="资产ID")
    component_id = Column(Integer, ForeignKey("components.id"), nullable=True, comment="部件ID")
    item_id = Column(Integer, comment="事件主体ID")
    item_type = Column(String(50), comment="事件主体类型：asset/component")
    event_type = Column(String(100), nullable=False, comment="事件类型")
    description = Column(Text, comment="事件描述")
    actor = Column(String(100), comment="操作人")
    event_metadata = Column("metadata", JSON, comment="事件扩展信息（JSON）")
    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        Index('idx_history_asset', 'asset_id'),
        Index('idx_history_component', 'component_id'),
        Index('idx_history_event_type', 'event_type'),
    )


class LotInstallation(Base):
    """库存批次安装表（批次与资产/部件的安装关系）"""
    __tablename__ = "lot_installations"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, nullable=False, comment="租户ID")
    lot_id = Column(Integer, nullable=False, comment="库存批次ID")
    asset_id = Column(Integer, ForeignKey("assets.id"), nullable=True, comment="资产ID")
    component_id = Column(Integer, ForeignKey("components.id"), nullable=True, comment="部件ID")
    quantity = Column(Integer, default=1, comment="安装数量")
    installed_at = Column(DateTime, server_default=func.now(), comment="安装时间")

    __table_args__ = (
        Index('idx_lot_installations_asset', 'asset_id'),
        Index('idx_lot_installations_component', 'component_id'),
    )


class MaintenanceChecklist(Base):
    """保养检查表"""
    __tablename__ = "maintenance_checklists"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, nullable=False, comment="租户ID")
    asset_id = Column(Integer, ForeignKey("assets.id"), nullable=True, comment="资产ID")
    component_id = Column(Integer, ForeignKey("components.id"), nullable=True, comment="部件ID")
    title = Column(String(200), nullable=False, comment="检查表名称")
    frequency_days = Column(Integer, comment="执行周期（天）")
    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        Index('idx_checklists_asset', 'asset_id'),
        Index('idx_checklists_component', 'component_id'),
    )


class Document(Base):
    """通用文档/附件表

    entity_type 为 PREVENTIVE_MAINTENANCE_TEMPLATE 时，url 字段存放的是
    预防性保养模板的 JSON（内嵌 assetId / assetName）
    """
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, nullable=False, comment="租户ID")
    asset_id = Column(Integer, ForeignKey("assets.id"), nullable=True, comment="资产ID")
    component_id = Column(Integer, ForeignKey("components.id"), nullable=True, comment="部件ID")
    entity_type = Column(String(100), comment="归属实体类型")
    entity_id = Column(String(100), comment="归属实体ID")
    name = Column(String(200), comment="文档名称")
    file_name = Column(String(255), comment="存储文件名")
    original_name = Column(String(255), comment="原始文件名")
    url = Column(Text, comment="文件地址（模板类文档为JSON）")
    doc_type = Column(String(50), comment="文档类型")
    file_size = Column(Integer, comment="文件大小（字节）")
    folder = Column(String(200), comment="目录")
    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        Index('idx_documents_asset', 'asset_id'),
        Index('idx_documents_component', 'component_id'),
        Index('idx_documents_entity_type', 'entity_type'),
    )
