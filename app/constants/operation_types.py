"""
业务操作类型常量定义
用于日志记录和历史事件的标准化类型
"""


class OperationType:
    """操作类型常量"""

    # 资产拆解
    ASSET_DISASSEMBLE = "asset.disassemble"
    ASSET_DISASSEMBLE_REPLAY = "asset.disassemble_replay"
    ASSET_DISASSEMBLE_PREVIEW = "asset.disassemble_preview"

    # 部件动作
    COMPONENT_PROMOTE = "component.promote"
    COMPONENT_DELETE = "component.delete"
    COMPONENT_ORPHAN = "component.orphan"


class OperationResult:
    """操作结果常量"""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class HistoryEventType:
    """历史事件类型（外部审计查看器只读消费）"""
    ASSET_CREATED_FROM_DISASSEMBLE = "ASSET_CREATED_FROM_DISASSEMBLE"
    ASSET_DISASSEMBLED = "ASSET_DISASSEMBLED"


class HistoryItemType:
    ASSET = "asset"


class DocumentEntityType:
    """文档归属实体类型"""
    ASSET = "asset"


# 视为"进行中"的工单状态（预览告警使用）
ACTIVE_WORK_ORDER_STATUSES = ("PENDING", "IN_PROGRESS", "ON_HOLD")
