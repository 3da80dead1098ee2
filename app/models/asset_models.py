"""
资产拆解 - 资产与部件树模型
部件通过 parent_id 自引用构成树，asset_id 为空表示"孤立部件"
"""

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Boolean, ForeignKey, Index, func
)
from sqlalchemy.orm import relationship
from app.db.session import Base
import enum


class AssetStatusEnum(str, enum.Enum):
    """资产状态"""
    ACTIVE = "ACTIVE"
    DECOMMISSIONED = "DECOMMISSIONED"


class Asset(Base):
    """资产主表（设备/机器）"""
    __tablename__ = "assets"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, nullable=False, comment="租户ID")
    name = Column(String(200), nullable=False, comment="资产名称")
    asset_code = Column(String(100), comment="资产编码（租户内唯一）")
    asset_type = Column(String(50), default="OTHER", comment="资产类型")
    description = Column(Text, comment="描述")
    technical_notes = Column(Text, comment="技术说明")
    status = Column(String(20), nullable=False, default=AssetStatusEnum.ACTIVE.value, comment="状态：ACTIVE/DECOMMISSIONED")

    # 组织位置
    area_id = Column(Integer, comment="区域ID")
    sector_id = Column(Integer, comment="工段ID")
    plant_zone_id = Column(Integer, comment="厂区ID")

    # 关键度评分
    criticality_production = Column(Integer, comment="生产关键度")
    criticality_safety = Column(Integer, comment="安全关键度")

    # 拆解来源（不设外键：原资产被删除后仍需保留来源记录）
    derived_from_component_id = Column(Integer, comment="来源部件ID")
    origin_asset_id = Column(Integer, comment="来源资产ID")
    promoted_at = Column(DateTime, comment="由部件提升为资产的时间")

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    components = relationship("Component", back_populates="asset", passive_deletes=True)

    __table_args__ = (
        Index('idx_assets_tenant', 'tenant_id'),
        Index('idx_assets_tenant_code', 'tenant_id', 'asset_code'),
        Index('idx_assets_status', 'status'),
        Index('idx_assets_origin', 'origin_asset_id'),
    )


class Component(Base):
    """部件表（资产部件树的节点）"""
    __tablename__ = "components"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, nullable=False, comment="租户ID")
    asset_id = Column(Integer, ForeignKey("assets.id"), nullable=True, comment="所属资产ID，为空表示孤立部件")
    parent_id = Column(Integer, ForeignKey("components.id"), nullable=True, comment="父部件ID")
    name = Column(String(200), nullable=False, comment="部件名称")
    code = Column(String(100), comment="部件编码")
    component_type = Column(String(50), comment="部件类型")
    description = Column(Text, comment="描述")
    technical_info = Column(Text, comment="技术信息")
    criticality = Column(Integer, comment="关键度")
    is_safety_critical = Column(Boolean, default=False, comment="是否安全关键")
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    asset = relationship("Asset", back_populates="components")
    parent = relationship("Component", remote_side=[id])

    __table_args__ = (
        Index('idx_components_asset', 'asset_id'),
        Index('idx_components_parent', 'parent_id'),
        Index('idx_components_tenant', 'tenant_id'),
    )
