"""
资产拆解API路由
提供拆解执行、拆解预览、操作状态查询接口
"""

from dataclasses import dataclass
from typing import Callable

from fastapi import APIRouter, Body, Depends, Header, Path
from sqlalchemy.orm import Session

from app.core.logging_config import get_logger
from app.db.session import get_session_factory
from app.schemas.asset_schemas import ApiResponse, ResponseCode
from app.schemas.disassemble_schemas import DisassembleRequest
from app.services.disassemble_service import DisassembleService

router = APIRouter()
logger = get_logger(__name__)


@dataclass
class RequestContext:
    """调用方身份（由上游网关完成认证后通过请求头传入）"""
    tenant_id: int
    operator: str


def get_request_context(
    tenant_id: int = Header(..., alias="X-Tenant-Id", gt=0, description="租户ID"),
    operator: str = Header("system", alias="X-Operator", description="操作人"),
) -> RequestContext:
    return RequestContext(tenant_id=tenant_id, operator=(operator or "").strip() or "system")


def get_disassemble_service(
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> DisassembleService:
    return DisassembleService(session_factory)


@router.post(
    "/assets/{asset_id}/disassemble",
    summary="拆解资产",
    response_model=ApiResponse,
    responses={
        200: {"description": "拆解成功（或重放已完成操作的结果）"},
        400: {"description": "请求参数错误"},
        403: {"description": "无权操作该资产"},
        404: {"description": "资产不存在"},
        409: {"description": "同一令牌的操作正在执行，或资产锁等待超时"},
        500: {"description": "事务执行失败，已整体回滚"},
    },
)
def disassemble_asset(
    asset_id: int = Path(..., gt=0, description="资产ID"),
    request: DisassembleRequest = Body(...),
    context: RequestContext = Depends(get_request_context),
    service: DisassembleService = Depends(get_disassemble_service),
):
    """
    拆解资产

    功能说明：
    - 按部件执行动作：promote（提升为独立资产）/ delete（删除子树）/ orphan（解除资产归属）
    - 迁移或清理所有依附记录（工单、故障、历史事件、批次安装、保养检查表、文档）
    - 最后处置原资产：delete（删除）或 decommission（停用）
    - 整个拆解在一个事务内完成，失败时全部回滚

    请求体说明：
    - operationToken: 客户端生成的操作令牌（必填），用于幂等，重试时必须使用同一令牌
    - componentActions: 部件动作列表 [{componentId, action, newAssetName}]
    - disposeOriginal: 原资产处置方式，默认 decommission
    - migrateHistory: 提升部件的工单/故障/历史事件是否迁移到新资产，默认 move
    - migrateDocuments: 提升部件的文档 move/copy/none，默认 move

    返回字段说明：
    - promotedAssets: 新生成的资产 [{id, name, fromComponent, subtreeSize}]
    - deletedComponentsCount / orphanedComponentsCount: 删除/孤立的部件数量
    - migrated*: 各类依附记录的迁移数量
    - originalAssetDeleted: 原资产是否已删除
    - skippedComponentIds: 不属于该资产而被跳过的部件
    - cached: 是否为重放的缓存结果
    - idempotencyDegraded: 幂等台账不可用，本次执行未受幂等保护

    注意事项：
    - 同一令牌重复提交返回首次执行的结果，不会重复执行
    - 409 / 500 可使用同一令牌重试；400 / 403 / 404 需要修正请求
    """
    result = service.disassemble(asset_id, request, context.tenant_id, context.operator)
    message = "拆解结果已返回（重复请求）" if result.cached else "资产拆解成功"
    return ApiResponse(
        code=ResponseCode.SUCCESS,
        message=message,
        data=result.model_dump(mode="json", by_alias=True),
    )


@router.get(
    "/assets/{asset_id}/disassemble-preview",
    summary="拆解预览",
    response_model=ApiResponse,
)
def preview_disassemble(
    asset_id: int = Path(..., gt=0, description="资产ID"),
    context: RequestContext = Depends(get_request_context),
    service: DisassembleService = Depends(get_disassemble_service),
):
    """
    拆解预览（只读）

    返回资产基本信息、顶层部件及其子部件、每个部件子树的依附记录统计、
    资产级汇总，以及进行中工单的告警，供用户确认拆解方案。
    """
    preview = service.preview(asset_id, context.tenant_id, context.operator)
    return ApiResponse(
        code=ResponseCode.SUCCESS,
        message="查询成功",
        data=preview.model_dump(mode="json", by_alias=True),
    )


@router.get(
    "/disassemble-operations/{token}",
    summary="查询拆解操作状态",
    response_model=ApiResponse,
)
def get_disassemble_operation(
    token: str = Path(..., min_length=1, max_length=100, description="操作令牌"),
    context: RequestContext = Depends(get_request_context),
    service: DisassembleService = Depends(get_disassemble_service),
):
    """按操作令牌查询拆解状态：pending / completed / failed"""
    status = service.get_operation(token, context.tenant_id)
    return ApiResponse(
        code=ResponseCode.SUCCESS,
        message="查询成功",
        data=status.model_dump(mode="json", by_alias=True),
    )
