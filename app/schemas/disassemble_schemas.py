"""
资产拆解 - 请求/响应 Schemas
对外字段统一为驼峰命名（operationToken、componentActions 等）
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator

from app.schemas.asset_schemas import CamelSchema


# =====================================================
# 枚举定义
# =====================================================

class ComponentActionType(str, Enum):
    """部件动作：提升为独立资产 / 删除 / 孤立（保留结构、解除资产归属）"""
    PROMOTE = "promote"
    DELETE = "delete"
    ORPHAN = "orphan"


class DisposeOriginal(str, Enum):
    """原资产处置方式"""
    DELETE = "delete"
    DECOMMISSION = "decommission"


class MigrateHistory(str, Enum):
    MOVE = "move"
    KEEP = "keep"


class MigrateDocuments(str, Enum):
    MOVE = "move"
    COPY = "copy"
    NONE = "none"


# =====================================================
# 拆解请求
# =====================================================

class ComponentActionRequest(CamelSchema):
    component_id: int = Field(..., gt=0, description="部件ID")
    action: ComponentActionType = Field(..., description="动作：promote/delete/orphan")
    new_asset_name: Optional[str] = Field(None, max_length=200, description="新资产名称（仅promote有效，默认使用部件名称）")

    @field_validator("new_asset_name")
    def strip_new_asset_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class DisassembleRequest(CamelSchema):
    operation_token: str = Field(..., min_length=1, max_length=100, description="客户端生成的幂等操作令牌")
    component_actions: List[ComponentActionRequest] = Field(default_factory=list, description="部件动作列表")
    dispose_original: DisposeOriginal = Field(DisposeOriginal.DECOMMISSION, description="原资产处置：delete/decommission")
    migrate_history: MigrateHistory = Field(MigrateHistory.MOVE, description="提升部件的历史记录：move/keep")
    migrate_documents: MigrateDocuments = Field(MigrateDocuments.MOVE, description="提升部件的文档：move/copy/none")


# =====================================================
# 拆解结果
# =====================================================

class PromotedAssetInfo(CamelSchema):
    id: int
    name: str
    from_component: str
    subtree_size: int


class DisassembleResult(CamelSchema):
    promoted_assets: List[PromotedAssetInfo] = Field(default_factory=list)
    deleted_components_count: int = 0
    orphaned_components_count: int = 0
    migrated_work_orders: int = 0
    migrated_failures: int = 0
    migrated_documents: int = 0
    migrated_lot_installations: int = 0
    migrated_checklists: int = 0
    migrated_preventive_templates: int = 0
    original_asset_deleted: bool = False
    skipped_component_ids: List[int] = Field(default_factory=list)
    cached: bool = Field(False, description="是否为重放的缓存结果")
    idempotency_degraded: bool = Field(False, description="幂等台账不可用，本次执行未受幂等保护")


# =====================================================
# 拆解预览
# =====================================================

class ComponentStats(CamelSchema):
    work_orders: int = 0
    active_work_orders: int = 0
    failures: int = 0
    documents: int = 0
    history_events: int = 0
    lot_installations: int = 0
    checklists: int = 0


class ChildComponentPreview(CamelSchema):
    id: int
    name: str
    children_count: int = 0


class ComponentPreview(CamelSchema):
    id: int
    name: str
    code: Optional[str] = None
    type: Optional[str] = None
    children_count: int = 0
    subtree_size: int = 1
    children: List[ChildComponentPreview] = Field(default_factory=list)
    stats: ComponentStats = Field(default_factory=ComponentStats)


class PreviewAsset(CamelSchema):
    id: int
    name: str
    status: str
    asset_code: Optional[str] = None


class PreviewTotals(CamelSchema):
    components: int = 0
    work_orders: int = 0
    failures: int = 0
    documents: int = 0
    asset_only_documents: int = 0
    lot_installations: int = 0
    checklists: int = 0
    asset_only_checklists: int = 0
    preventive_templates: int = 0


class PreviewWarnings(CamelSchema):
    has_active_work_orders: bool = False
    total_active_work_orders: int = 0


class DisassemblePreview(CamelSchema):
    asset: PreviewAsset
    components: List[ComponentPreview] = Field(default_factory=list)
    totals: PreviewTotals = Field(default_factory=PreviewTotals)
    warnings: PreviewWarnings = Field(default_factory=PreviewWarnings)


# =====================================================
# 操作状态查询
# =====================================================

class DisassembleOperationStatus(CamelSchema):
    operation_token: str
    asset_id: int
    status: str
    actor: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
