"""
资产拆解编排服务

执行流程：
    Received -> LedgerChecked -> Locked -> Validated -> Executing -> Finalizing -> Committed
    终态：Replayed（重放缓存结果）/ Failed（事务已回滚，台账标记 failed）

加锁之前的错误（参数错误、令牌处理中）不写台账；
加锁之后的任何结果都会反映到台账（completed 或 failed）。
"""

import json
import time
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.constants.operation_types import (
    ACTIVE_WORK_ORDER_STATUSES,
    OperationResult,
    OperationType,
)
from app.core.config import settings
from app.core.exceptions import (
    ConflictError,
    DisassembleError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
    TransactionFailureError,
)
from app.core.logging_config import get_logger
from app.models.asset_models import Asset, Component
from app.models.maintenance_models import (
    Document,
    FailureOccurrence,
    HistoryEvent,
    LotInstallation,
    MaintenanceChecklist,
    WorkOrder,
)
from app.schemas.disassemble_schemas import (
    ChildComponentPreview,
    ComponentActionRequest,
    ComponentPreview,
    ComponentStats,
    DisassembleOperationStatus,
    DisassemblePreview,
    DisassembleRequest,
    DisassembleResult,
    PreviewAsset,
    PreviewTotals,
    PreviewWarnings,
)
from app.services.asset_finalizer import AssetFinalizer
from app.services.component_actions import ActionContext, DisassembleTally, get_action
from app.services.idempotency_ledger import IdempotencyLedger, LedgerStatus
from app.services.lock_coordinator import LockCoordinator
from app.services.tree_resolver import subtree
from app.utils.log_helper import log_operation

logger = get_logger(__name__)


class DisassembleState(str, Enum):
    RECEIVED = "Received"
    LEDGER_CHECKED = "LedgerChecked"
    LOCKED = "Locked"
    VALIDATED = "Validated"
    EXECUTING = "Executing"
    FINALIZING = "Finalizing"
    COMMITTED = "Committed"
    REPLAYED = "Replayed"
    FAILED = "Failed"


class DisassembleService:
    """资产拆解服务"""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        ledger: Optional[IdempotencyLedger] = None,
        lock_coordinator: Optional[LockCoordinator] = None,
        finalizer: Optional[AssetFinalizer] = None,
    ):
        self.session_factory = session_factory
        self.ledger = ledger or IdempotencyLedger(session_factory)
        self.lock_coordinator = lock_coordinator or LockCoordinator()
        self.finalizer = finalizer or AssetFinalizer()

    # =====================================================
    # 拆解
    # =====================================================

    def disassemble(
        self,
        asset_id: int,
        request: DisassembleRequest,
        tenant_id: int,
        actor: str = "system",
    ) -> DisassembleResult:
        started = time.monotonic()
        token = self._validate_request(asset_id, request)
        self._transition(token, DisassembleState.RECEIVED, f"asset_id={asset_id} actions={len(request.component_actions)}")

        decision = self.ledger.begin(token, asset_id, tenant_id, actor)
        self._transition(token, DisassembleState.LEDGER_CHECKED, f"ledger={decision.status.value}")

        if decision.status == LedgerStatus.ALREADY_COMPLETED:
            result = DisassembleResult.model_validate(decision.result or {})
            result.cached = True
            self._transition(token, DisassembleState.REPLAYED)
            log_operation(
                OperationType.ASSET_DISASSEMBLE_REPLAY,
                f"asset:{asset_id}",
                actor,
                OperationResult.SUCCESS,
                message=f"Disassemble replayed from ledger: token={token}",
                remark=token,
            )
            return result

        if decision.status == LedgerStatus.ALREADY_PENDING:
            logger.warning("Disassemble operation already in progress: token=%s asset_id=%s", token, asset_id)
            raise ConflictError("该操作正在执行中，请稍后使用同一令牌重试", operation_token=token)

        try:
            result = self._execute(token, asset_id, request, tenant_id, actor)
        except Exception as exc:
            if isinstance(exc, DisassembleError):
                error = exc
            elif isinstance(exc, SQLAlchemyError):
                error = TransactionFailureError(f"拆解事务执行失败，已整体回滚: {exc}")
            else:
                error = None
            if error is not None:
                error.operation_token = token

            if not decision.degraded:
                self.ledger.fail(token, str(exc))
            self._transition(token, DisassembleState.FAILED, f"error={exc}")
            log_operation(
                OperationType.ASSET_DISASSEMBLE,
                f"asset:{asset_id}",
                actor,
                OperationResult.FAILED,
                message=f"Disassemble failed: {exc}",
                remark=token,
            )
            if error is None or error is exc:
                raise
            raise error from exc

        result.idempotency_degraded = decision.degraded
        if not decision.degraded:
            if not self.ledger.complete(token, result.model_dump(mode="json", by_alias=True)):
                result.idempotency_degraded = True

        elapsed = time.monotonic() - started
        if elapsed > settings.DISASSEMBLE_TRANSACTION_TIMEOUT_SECONDS:
            logger.warning("Disassemble exceeded transaction budget: token=%s elapsed=%.1fs budget=%ss",
                           token, elapsed, settings.DISASSEMBLE_TRANSACTION_TIMEOUT_SECONDS)

        log_operation(
            OperationType.ASSET_DISASSEMBLE,
            f"asset:{asset_id}",
            actor,
            OperationResult.SUCCESS,
            message=(
                f"Disassemble completed: promoted={len(result.promoted_assets)} "
                f"deleted={result.deleted_components_count} orphaned={result.orphaned_components_count} "
                f"asset_deleted={result.original_asset_deleted}"
            ),
            remark=token,
        )
        return result

    def _validate_request(self, asset_id: int, request: DisassembleRequest) -> str:
        token = (request.operation_token or "").strip()
        if not token:
            raise InvalidInputError("operationToken 不能为空")
        if asset_id is None or asset_id <= 0:
            raise InvalidInputError("资产ID无效", operation_token=token)

        seen = set()
        duplicates = []
        for item in request.component_actions:
            if item.component_id in seen:
                duplicates.append(item.component_id)
            seen.add(item.component_id)
        if duplicates:
            raise InvalidInputError(
                f"componentActions 中存在重复的部件ID: {sorted(set(duplicates))}",
                operation_token=token,
            )
        return token

    def _execute(
        self,
        token: str,
        asset_id: int,
        request: DisassembleRequest,
        tenant_id: int,
        actor: str,
    ) -> DisassembleResult:
        db = self.session_factory()
        try:
            with self.lock_coordinator.exclusive_lock(db, asset_id):
                self._transition(token, DisassembleState.LOCKED)
                try:
                    asset = self._load_asset(db, asset_id, tenant_id)
                    self._transition(token, DisassembleState.VALIDATED)

                    ctx = ActionContext(db=db, asset=asset, request=request, actor=actor)
                    tally = DisassembleTally()
                    self._transition(token, DisassembleState.EXECUTING)
                    for params in request.component_actions:
                        self._apply_action(ctx, tally, params)

                    self._transition(token, DisassembleState.FINALIZING)
                    self.finalizer.finalize(ctx, tally)
                    result = tally.to_result()
                    db.commit()
                except Exception:
                    db.rollback()
                    raise
            self._transition(token, DisassembleState.COMMITTED)
            return result
        finally:
            db.close()

    def _load_asset(self, db: Session, asset_id: int, tenant_id: int) -> Asset:
        asset = db.query(Asset).filter(Asset.id == asset_id).first()
        if not asset:
            raise NotFoundError(f"资产不存在: {asset_id}")
        if asset.tenant_id != tenant_id:
            raise ForbiddenError("无权操作该资产")
        return asset

    def _apply_action(self, ctx: ActionContext, tally: DisassembleTally, params: ComponentActionRequest):
        db = ctx.db
        # 前面的动作以批量语句修改过部件树，重新从数据库读取
        db.expire_all()
        component = db.query(Component).filter(Component.id == params.component_id).first()
        if component is None or component.asset_id != ctx.asset.id:
            tally.skipped_component_ids.append(params.component_id)
            log_operation(
                get_action(params.action).operation_type,
                f"component:{params.component_id}",
                ctx.actor,
                OperationResult.SKIPPED,
                message=f"Skip component {params.action.value}, component not in asset",
                remark=f"asset:{ctx.asset.id}",
            )
            return

        subtree_ids = subtree(db, component.id)
        action = get_action(params.action)
        outcome = action.apply(ctx, component, subtree_ids, params)
        tally.absorb(outcome)
        log_operation(
            action.operation_type,
            f"component:{component.id}",
            ctx.actor,
            OperationResult.SUCCESS,
            message=f"Component {params.action.value} applied: subtree_size={len(subtree_ids)}",
            remark=f"asset:{ctx.asset.id}",
        )

    def _transition(self, token: str, state: DisassembleState, detail: str = ""):
        log = logger.warning if state == DisassembleState.FAILED else logger.info
        log("Disassemble state -> %s: token=%s %s", state.value, token, detail)

    # =====================================================
    # 拆解预览
    # =====================================================

    def preview(self, asset_id: int, tenant_id: int, actor: str = "system") -> DisassemblePreview:
        db = self.session_factory()
        try:
            asset = self._load_asset(db, asset_id, tenant_id)

            rows = (
                db.query(Component.id, Component.name, Component.code, Component.component_type, Component.parent_id)
                .filter(Component.asset_id == asset_id)
                .order_by(Component.id)
                .all()
            )
            children_of: Dict[int, List[Tuple]] = {}
            for row in rows:
                children_of.setdefault(row.parent_id, []).append(row)

            components = []
            for top in children_of.get(None, []):
                subtree_ids = subtree(db, top.id)
                children = [
                    ChildComponentPreview(
                        id=child.id,
                        name=child.name,
                        children_count=len(children_of.get(child.id, [])),
                    )
                    for child in children_of.get(top.id, [])
                ]
                components.append(ComponentPreview(
                    id=top.id,
                    name=top.name,
                    code=top.code,
                    type=top.component_type,
                    children_count=len(children),
                    subtree_size=len(subtree_ids),
                    children=children,
                    stats=self._subtree_stats(db, subtree_ids),
                ))

            total_active = self._count(
                db, WorkOrder,
                WorkOrder.asset_id == asset_id,
                WorkOrder.status.in_(ACTIVE_WORK_ORDER_STATUSES),
            )
            totals = PreviewTotals(
                components=len(rows),
                work_orders=self._count(db, WorkOrder, WorkOrder.asset_id == asset_id),
                failures=self._count(db, FailureOccurrence, FailureOccurrence.asset_id == asset_id),
                documents=self._count(db, Document, Document.asset_id == asset_id),
                asset_only_documents=self._count(
                    db, Document, Document.asset_id == asset_id, Document.component_id.is_(None)
                ),
                lot_installations=self._count(db, LotInstallation, LotInstallation.asset_id == asset_id),
                checklists=self._count(db, MaintenanceChecklist, MaintenanceChecklist.asset_id == asset_id),
                asset_only_checklists=self._count(
                    db, MaintenanceChecklist,
                    MaintenanceChecklist.asset_id == asset_id,
                    MaintenanceChecklist.component_id.is_(None),
                ),
                preventive_templates=self._count_preventive_templates(db, asset),
            )

            preview = DisassemblePreview(
                asset=PreviewAsset(id=asset.id, name=asset.name, status=asset.status, asset_code=asset.asset_code),
                components=components,
                totals=totals,
                warnings=PreviewWarnings(
                    has_active_work_orders=total_active > 0,
                    total_active_work_orders=total_active,
                ),
            )
        finally:
            db.close()

        log_operation(
            OperationType.ASSET_DISASSEMBLE_PREVIEW,
            f"asset:{asset_id}",
            actor,
            OperationResult.SUCCESS,
            message=f"Disassemble preview: components={totals.components}",
        )
        return preview

    def _count(self, db: Session, model, *criteria) -> int:
        return db.query(func.count(model.id)).filter(*criteria).scalar() or 0

    def _subtree_stats(self, db: Session, subtree_ids: List[int]) -> ComponentStats:
        return ComponentStats(
            work_orders=self._count(db, WorkOrder, WorkOrder.component_id.in_(subtree_ids)),
            active_work_orders=self._count(
                db, WorkOrder,
                WorkOrder.component_id.in_(subtree_ids),
                WorkOrder.status.in_(ACTIVE_WORK_ORDER_STATUSES),
            ),
            failures=self._count(db, FailureOccurrence, FailureOccurrence.component_id.in_(subtree_ids)),
            documents=self._count(db, Document, Document.component_id.in_(subtree_ids)),
            history_events=self._count(db, HistoryEvent, HistoryEvent.component_id.in_(subtree_ids)),
            lot_installations=self._count(db, LotInstallation, LotInstallation.component_id.in_(subtree_ids)),
            checklists=self._count(db, MaintenanceChecklist, MaintenanceChecklist.component_id.in_(subtree_ids)),
        )

    def _count_preventive_templates(self, db: Session, asset: Asset) -> int:
        templates = (
            db.query(Document.url)
            .filter(
                Document.entity_type == self.finalizer.template_entity_type,
                Document.tenant_id == asset.tenant_id,
                Document.url.contains(str(asset.id)),
            )
            .all()
        )
        count = 0
        for (url,) in templates:
            try:
                data = json.loads(url)
            except (TypeError, ValueError):
                continue
            if isinstance(data, dict) and str(data.get("assetId")) == str(asset.id):
                count += 1
        return count

    # =====================================================
    # 操作状态查询
    # =====================================================

    def get_operation(self, token: str, tenant_id: int) -> DisassembleOperationStatus:
        record = self.ledger.get(token)
        if record is None or record.tenant_id != tenant_id:
            raise NotFoundError(f"拆解操作不存在: {token}", operation_token=token)
        return DisassembleOperationStatus(
            operation_token=record.token,
            asset_id=record.asset_id,
            status=record.status,
            actor=record.actor,
            result=record.result,
            error_message=record.error_message,
            created_at=record.created_at,
            completed_at=record.completed_at,
        )
