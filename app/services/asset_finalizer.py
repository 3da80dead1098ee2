"""
原资产收尾处理

所有部件动作执行完成后：
1. 资产级保养检查表迁移到第一个提升出的新资产
2. 改写 Document 中以 JSON 存储的预防性保养模板（内嵌 assetId / assetName）
3. 处置原资产：删除（先写终结历史事件，再清理所有引用）或标记为 DECOMMISSIONED
"""

import json
from typing import Optional

from app.constants.operation_types import HistoryEventType, HistoryItemType
from app.core.config import settings
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
from app.schemas.disassemble_schemas import DisposeOriginal, PromotedAssetInfo
from app.services.component_actions import ActionContext, DisassembleTally

logger = get_logger(__name__)


class AssetFinalizer:

    def __init__(self, template_entity_type: Optional[str] = None):
        self.template_entity_type = template_entity_type or settings.PREVENTIVE_TEMPLATE_ENTITY_TYPE

    def finalize(self, ctx: ActionContext, tally: DisassembleTally) -> DisassembleTally:
        if tally.promoted_assets:
            target = tally.promoted_assets[0]
            tally.migrated_checklists += self._migrate_asset_checklists(ctx, target)
            tally.migrated_preventive_templates += self._rewrite_preventive_templates(ctx, target)

        if ctx.request.dispose_original == DisposeOriginal.DELETE:
            self._delete_original(ctx, tally)
        else:
            self._decommission_original(ctx, tally)

        ctx.db.flush()
        return tally

    # =====================================================
    # 资产级依附记录迁移
    # =====================================================

    def _migrate_asset_checklists(self, ctx: ActionContext, target: PromotedAssetInfo) -> int:
        return (
            ctx.db.query(MaintenanceChecklist)
            .filter(
                MaintenanceChecklist.asset_id == ctx.asset.id,
                MaintenanceChecklist.component_id.is_(None),
            )
            .update({MaintenanceChecklist.asset_id: target.id}, synchronize_session=False)
        )

    def _rewrite_preventive_templates(self, ctx: ActionContext, target: PromotedAssetInfo) -> int:
        """模板内容以 JSON 存在 url 字段里，只能解析后逐条改写"""
        asset_id = ctx.asset.id
        templates = (
            ctx.db.query(Document)
            .filter(
                Document.entity_type == self.template_entity_type,
                Document.tenant_id == ctx.tenant_id,
                Document.url.contains(str(asset_id)),
            )
            .all()
        )

        migrated = 0
        for template in templates:
            try:
                data = json.loads(template.url)
            except (TypeError, ValueError):
                logger.warning("Skip preventive template with invalid JSON: document_id=%s", template.id)
                continue
            if not isinstance(data, dict) or str(data.get("assetId")) != str(asset_id):
                continue

            data["assetId"] = target.id
            if data.get("assetName"):
                data["assetName"] = target.name
            template.url = json.dumps(data, ensure_ascii=False, separators=(",", ":"))
            migrated += 1

        if migrated:
            logger.info("Preventive templates migrated: asset_id=%s target=%s count=%s",
                        asset_id, target.id, migrated)
        return migrated

    # =====================================================
    # 原资产处置
    # =====================================================

    def _summary_metadata(self, tally: DisassembleTally) -> dict:
        return {
            "promotedAssets": [{"id": p.id, "name": p.name} for p in tally.promoted_assets],
            "deletedComponents": tally.deleted_components_count,
            "orphanedComponents": tally.orphaned_components_count,
        }

    def _decommission_original(self, ctx: ActionContext, tally: DisassembleTally):
        db = ctx.db
        asset = ctx.asset
        db.query(Asset).filter(Asset.id == asset.id).update(
            {Asset.status: AssetStatusEnum.DECOMMISSIONED.value}, synchronize_session=False
        )
        db.add(HistoryEvent(
            tenant_id=asset.tenant_id,
            asset_id=asset.id,
            item_id=asset.id,
            item_type=HistoryItemType.ASSET,
            event_type=HistoryEventType.ASSET_DISASSEMBLED,
            description=f'资产"{asset.name}"已拆解并停用',
            actor=ctx.actor,
            event_metadata=self._summary_metadata(tally),
        ))
        tally.original_asset_deleted = False

    def _delete_original(self, ctx: ActionContext, tally: DisassembleTally):
        db = ctx.db
        asset = ctx.asset
        asset_id = asset.id
        asset_name = asset.name
        asset_code = asset.asset_code
        tenant_id = asset.tenant_id

        # 未请求任何动作的部件：原地孤立（保留父子关系）
        remaining_ids = [
            row.id for row in db.query(Component.id).filter(Component.asset_id == asset_id).all()
        ]
        if remaining_ids:
            db.query(Component).filter(Component.id.in_(remaining_ids)).update(
                {Component.asset_id: None}, synchronize_session=False
            )
            tally.orphaned_components_count += len(remaining_ids)
            logger.info("Remaining components orphaned with deleted asset: asset_id=%s count=%s",
                        asset_id, len(remaining_ids))

        # 资产行即将消失，终结事件不挂靠资产
        metadata = {"assetName": asset_name, "assetCode": asset_code}
        metadata.update(self._summary_metadata(tally))
        db.add(HistoryEvent(
            tenant_id=tenant_id,
            asset_id=None,
            item_id=asset_id,
            item_type=HistoryItemType.ASSET,
            event_type=HistoryEventType.ASSET_DISASSEMBLED,
            description=f'资产"{asset_name}"已拆解并删除',
            actor=ctx.actor,
            event_metadata=metadata,
        ))

        db.query(Document).filter(
            Document.asset_id == asset_id, Document.component_id.is_(None)
        ).delete(synchronize_session=False)

        db.query(WorkOrder).filter(WorkOrder.asset_id == asset_id).update(
            {WorkOrder.asset_id: None}, synchronize_session=False
        )

        failure_ids = [
            row.id for row in
            db.query(FailureOccurrence.id).filter(
                FailureOccurrence.asset_id == asset_id, FailureOccurrence.component_id.is_(None)
            ).all()
        ]
        if failure_ids:
            db.query(SolutionApplied).filter(SolutionApplied.failure_occurrence_id.in_(failure_ids)).delete(
                synchronize_session=False
            )
            db.query(FailureOccurrence).filter(FailureOccurrence.id.in_(failure_ids)).delete(
                synchronize_session=False
            )

        db.query(LotInstallation).filter(
            LotInstallation.asset_id == asset_id, LotInstallation.component_id.is_(None)
        ).update({LotInstallation.asset_id: None}, synchronize_session=False)

        db.query(HistoryEvent).filter(
            HistoryEvent.asset_id == asset_id, HistoryEvent.component_id.is_(None)
        ).delete(synchronize_session=False)

        # 剩余仍指向原资产的部件级记录（migrateHistory=keep / migrateDocuments=none 等）
        for model in (FailureOccurrence, HistoryEvent, LotInstallation, MaintenanceChecklist, Document):
            db.query(model).filter(model.asset_id == asset_id).update(
                {model.asset_id: None}, synchronize_session=False
            )

        db.query(Asset).filter(Asset.id == asset_id).delete(synchronize_session=False)
        tally.original_asset_deleted = True
        logger.info("Original asset deleted: asset_id=%s name=%s", asset_id, asset_name)
