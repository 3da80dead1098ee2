"""
部件动作执行器

三种动作（promote / delete / orphan）共享同一个 apply(ctx, component, subtree_ids, params)
接口，通过 ACTIONS 分发表按 ComponentActionType 选择实现。
所有写操作都在调用方的事务内执行，不在这里提交。
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from app.constants.operation_types import (
    DocumentEntityType,
    HistoryEventType,
    HistoryItemType,
    OperationType,
)
from app.core.logging_config import get_logger
from app.models.asset_models import Asset, AssetStatusEnum, Component
from app.models.maintenance_models import (
    Document,
    FailureOccurrence,
    HistoryEvent,
    LotInstallation,
    MaintenanceChecklist,
    SolutionApplied,
    WorkOrder,
)
from app.schemas.disassemble_schemas import (
    ComponentActionRequest,
    ComponentActionType,
    DisassembleRequest,
    DisassembleResult,
    MigrateDocuments,
    MigrateHistory,
    PromotedAssetInfo,
)
from app.services.tree_resolver import bottom_up_levels

logger = get_logger(__name__)


@dataclass
class ActionContext:
    """一次拆解中所有动作共享的上下文"""
    db: Session
    asset: Asset
    request: DisassembleRequest
    actor: str

    @property
    def tenant_id(self) -> int:
        return self.asset.tenant_id


@dataclass
class ActionOutcome:
    action: ComponentActionType
    component_id: int
    promoted_asset: Optional[PromotedAssetInfo] = None
    deleted_ids: List[int] = field(default_factory=list)
    orphaned_ids: List[int] = field(default_factory=list)
    migrated_work_orders: int = 0
    migrated_failures: int = 0
    migrated_documents: int = 0
    migrated_lot_installations: int = 0
    migrated_checklists: int = 0


@dataclass
class DisassembleTally:
    """汇总各动作与收尾阶段的计数，最终生成 DisassembleResult"""
    promoted_assets: List[PromotedAssetInfo] = field(default_factory=list)
    deleted_components_count: int = 0
    orphaned_components_count: int = 0
    migrated_work_orders: int = 0
    migrated_failures: int = 0
    migrated_documents: int = 0
    migrated_lot_installations: int = 0
    migrated_checklists: int = 0
    migrated_preventive_templates: int = 0
    original_asset_deleted: bool = False
    skipped_component_ids: List[int] = field(default_factory=list)

    def absorb(self, outcome: ActionOutcome):
        if outcome.promoted_asset is not None:
            self.promoted_assets.append(outcome.promoted_asset)
        self.deleted_components_count += len(outcome.deleted_ids)
        self.orphaned_components_count += len(outcome.orphaned_ids)
        self.migrated_work_orders += outcome.migrated_work_orders
        self.migrated_failures += outcome.migrated_failures
        self.migrated_documents += outcome.migrated_documents
        self.migrated_lot_installations += outcome.migrated_lot_installations
        self.migrated_checklists += outcome.migrated_checklists

    def to_result(self) -> DisassembleResult:
        return DisassembleResult(
            promoted_assets=list(self.promoted_assets),
            deleted_components_count=self.deleted_components_count,
            orphaned_components_count=self.orphaned_components_count,
            migrated_work_orders=self.migrated_work_orders,
            migrated_failures=self.migrated_failures,
            migrated_documents=self.migrated_documents,
            migrated_lot_installations=self.migrated_lot_installations,
            migrated_checklists=self.migrated_checklists,
            migrated_preventive_templates=self.migrated_preventive_templates,
            original_asset_deleted=self.original_asset_deleted,
            skipped_component_ids=list(self.skipped_component_ids),
        )


class ComponentAction:
    """部件动作基类"""

    action_type: ComponentActionType
    operation_type: str

    def apply(
        self,
        ctx: ActionContext,
        component: Component,
        subtree_ids: List[int],
        params: ComponentActionRequest,
    ) -> ActionOutcome:
        raise NotImplementedError


class PromoteAction(ComponentAction):
    """将部件子树提升为独立资产"""

    action_type = ComponentActionType.PROMOTE
    operation_type = OperationType.COMPONENT_PROMOTE

    def apply(self, ctx, component, subtree_ids, params):
        db = ctx.db
        origin = ctx.asset
        outcome = ActionOutcome(action=self.action_type, component_id=component.id)
        component_name = component.name

        new_asset = Asset(
            tenant_id=origin.tenant_id,
            name=params.new_asset_name or component_name,
            asset_code=self._unique_asset_code(db, origin.tenant_id, component.code, component.id),
            asset_type="OTHER",
            description=component.description,
            technical_notes=component.technical_info,
            status=AssetStatusEnum.ACTIVE.value,
            area_id=origin.area_id,
            sector_id=origin.sector_id,
            plant_zone_id=origin.plant_zone_id,
            criticality_production=component.criticality,
            criticality_safety=10 if component.is_safety_critical else 1,
            derived_from_component_id=component.id,
            origin_asset_id=origin.id,
            promoted_at=datetime.now(),
        )
        db.add(new_asset)
        db.flush()  # 获取新资产ID

        # 根部件脱离原父节点，整棵子树归属新资产
        db.query(Component).filter(Component.id == component.id).update(
            {Component.parent_id: None, Component.asset_id: new_asset.id},
            synchronize_session=False,
        )
        descendant_ids = [cid for cid in subtree_ids if cid != component.id]
        if descendant_ids:
            db.query(Component).filter(Component.id.in_(descendant_ids)).update(
                {Component.asset_id: new_asset.id},
                synchronize_session=False,
            )
            # 直接子部件成为新资产的顶层部件
            db.query(Component).filter(Component.parent_id == component.id).update(
                {Component.parent_id: None},
                synchronize_session=False,
            )

        if ctx.request.migrate_history == MigrateHistory.MOVE:
            outcome.migrated_work_orders = (
                db.query(WorkOrder)
                .filter(WorkOrder.component_id.in_(subtree_ids))
                .update({WorkOrder.asset_id: new_asset.id}, synchronize_session=False)
            )
            outcome.migrated_failures = (
                db.query(FailureOccurrence)
                .filter(FailureOccurrence.component_id.in_(subtree_ids))
                .update({FailureOccurrence.asset_id: new_asset.id}, synchronize_session=False)
            )
            # 解决方案引用的部件ID不变，无需更新
            db.query(HistoryEvent).filter(HistoryEvent.component_id.in_(subtree_ids)).update(
                {HistoryEvent.asset_id: new_asset.id},
                synchronize_session=False,
            )

        outcome.migrated_lot_installations = (
            db.query(LotInstallation)
            .filter(LotInstallation.component_id.in_(subtree_ids))
            .update({LotInstallation.asset_id: new_asset.id}, synchronize_session=False)
        )
        outcome.migrated_checklists = (
            db.query(MaintenanceChecklist)
            .filter(MaintenanceChecklist.component_id.in_(subtree_ids))
            .update({MaintenanceChecklist.asset_id: new_asset.id}, synchronize_session=False)
        )
        outcome.migrated_documents = self._migrate_documents(
            db, ctx.request.migrate_documents, subtree_ids, new_asset
        )

        db.add(HistoryEvent(
            tenant_id=origin.tenant_id,
            asset_id=new_asset.id,
            item_id=new_asset.id,
            item_type=HistoryItemType.ASSET,
            event_type=HistoryEventType.ASSET_CREATED_FROM_DISASSEMBLE,
            description=f'资产由"{origin.name}"拆解生成',
            actor=ctx.actor,
            event_metadata={
                "originAssetId": origin.id,
                "originAssetName": origin.name,
                "originalComponentId": component.id,
                "originalComponentName": component_name,
            },
        ))
        db.flush()

        outcome.promoted_asset = PromotedAssetInfo(
            id=new_asset.id,
            name=new_asset.name,
            from_component=component_name,
            subtree_size=len(subtree_ids),
        )
        return outcome

    def _unique_asset_code(
        self, db: Session, tenant_id: int, code: Optional[str], component_id: int
    ) -> Optional[str]:
        """部件编码作为资产编码，租户内已存在时追加 -DIS-<毫秒时间戳>，仍冲突再追加部件ID和序号"""
        if not code:
            return code
        base = f"{code}-DIS-{int(time.time() * 1000)}"
        for candidate in (code, base, f"{base}-{component_id}"):
            if not self._asset_code_taken(db, tenant_id, candidate):
                return candidate
        seq = 2
        while True:
            candidate = f"{base}-{component_id}-{seq}"
            if not self._asset_code_taken(db, tenant_id, candidate):
                return candidate
            seq += 1

    def _asset_code_taken(self, db: Session, tenant_id: int, code: str) -> bool:
        return (
            db.query(Asset.id)
            .filter(Asset.tenant_id == tenant_id, Asset.asset_code == code)
            .first()
        ) is not None

    def _migrate_documents(
        self,
        db: Session,
        mode: MigrateDocuments,
        subtree_ids: List[int],
        new_asset: Asset,
    ) -> int:
        if mode == MigrateDocuments.MOVE:
            return (
                db.query(Document)
                .filter(Document.component_id.in_(subtree_ids))
                .update({Document.asset_id: new_asset.id}, synchronize_session=False)
            )
        if mode == MigrateDocuments.COPY:
            docs = db.query(Document).filter(Document.component_id.in_(subtree_ids)).all()
            for doc in docs:
                db.add(Document(
                    tenant_id=doc.tenant_id,
                    asset_id=new_asset.id,
                    component_id=doc.component_id,
                    entity_type=DocumentEntityType.ASSET,
                    entity_id=str(new_asset.id),
                    name=doc.name,
                    file_name=doc.file_name,
                    original_name=doc.original_name,
                    url=doc.url,
                    doc_type=doc.doc_type,
                    file_size=doc.file_size,
                    folder=doc.folder,
                ))
            return len(docs)
        return 0


class DeleteAction(ComponentAction):
    """删除部件子树并清理全部引用"""

    action_type = ComponentActionType.DELETE
    operation_type = OperationType.COMPONENT_DELETE

    def apply(self, ctx, component, subtree_ids, params):
        db = ctx.db

        db.query(Document).filter(Document.component_id.in_(subtree_ids)).delete(
            synchronize_session=False
        )
        # 工单保留在原资产上，只解除部件关联
        db.query(WorkOrder).filter(WorkOrder.component_id.in_(subtree_ids)).update(
            {WorkOrder.component_id: None}, synchronize_session=False
        )
        db.query(SolutionApplied).filter(SolutionApplied.final_component_id.in_(subtree_ids)).update(
            {SolutionApplied.final_component_id: None}, synchronize_session=False
        )
        db.query(SolutionApplied).filter(SolutionApplied.final_subcomponent_id.in_(subtree_ids)).update(
            {SolutionApplied.final_subcomponent_id: None}, synchronize_session=False
        )

        failure_ids = [
            row.id for row in
            db.query(FailureOccurrence.id).filter(FailureOccurrence.component_id.in_(subtree_ids)).all()
        ]
        if failure_ids:
            db.query(SolutionApplied).filter(SolutionApplied.failure_occurrence_id.in_(failure_ids)).delete(
                synchronize_session=False
            )
            db.query(FailureOccurrence).filter(FailureOccurrence.id.in_(failure_ids)).delete(
                synchronize_session=False
            )

        db.query(LotInstallation).filter(LotInstallation.component_id.in_(subtree_ids)).update(
            {LotInstallation.component_id: None}, synchronize_session=False
        )
        db.query(MaintenanceChecklist).filter(MaintenanceChecklist.component_id.in_(subtree_ids)).update(
            {MaintenanceChecklist.component_id: None}, synchronize_session=False
        )
        db.query(HistoryEvent).filter(HistoryEvent.component_id.in_(subtree_ids)).delete(
            synchronize_session=False
        )

        # 先删最深层，最后删根部件
        descendant_ids = [cid for cid in subtree_ids if cid != component.id]
        for level in bottom_up_levels(db, component.id, descendant_ids):
            db.query(Component).filter(Component.id.in_(level)).delete(synchronize_session=False)
        db.query(Component).filter(Component.id == component.id).delete(synchronize_session=False)

        return ActionOutcome(
            action=self.action_type,
            component_id=component.id,
            deleted_ids=list(subtree_ids),
        )


class OrphanAction(ComponentAction):
    """解除子树的资产归属，子树内部的父子关系保持不变"""

    action_type = ComponentActionType.ORPHAN
    operation_type = OperationType.COMPONENT_ORPHAN

    def apply(self, ctx, component, subtree_ids, params):
        db = ctx.db

        db.query(Component).filter(Component.id.in_(subtree_ids)).update(
            {Component.asset_id: None}, synchronize_session=False
        )
        # 子树根节点的父节点仍属于原资产，断开这条跨资产的链接
        if component.parent_id is not None:
            db.query(Component).filter(Component.id == component.id).update(
                {Component.parent_id: None}, synchronize_session=False
            )
        db.query(LotInstallation).filter(LotInstallation.component_id.in_(subtree_ids)).update(
            {LotInstallation.asset_id: None}, synchronize_session=False
        )
        db.query(MaintenanceChecklist).filter(MaintenanceChecklist.component_id.in_(subtree_ids)).update(
            {MaintenanceChecklist.asset_id: None}, synchronize_session=False
        )

        return ActionOutcome(
            action=self.action_type,
            component_id=component.id,
            orphaned_ids=list(subtree_ids),
        )


ACTIONS: Dict[ComponentActionType, ComponentAction] = {
    ComponentActionType.PROMOTE: PromoteAction(),
    ComponentActionType.DELETE: DeleteAction(),
    ComponentActionType.ORPHAN: OrphanAction(),
}


def get_action(action_type: ComponentActionType) -> ComponentAction:
    return ACTIONS[ComponentActionType(action_type)]
