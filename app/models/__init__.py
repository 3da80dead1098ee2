# models package
from app.models.asset_models import Asset, Component, AssetStatusEnum
from app.models.maintenance_models import (
    WorkOrder,
    FailureOccurrence,
    SolutionApplied,
    HistoryEvent,
    LotInstallation,
    MaintenanceChecklist,
    Document,
)
from app.models.disassemble_models import DisassembleOperation, OperationStatusEnum

__all__ = [
    # 资产与部件树
    "Asset",
    "Component",
    "AssetStatusEnum",
    # 依附记录
    "WorkOrder",
    "FailureOccurrence",
    "SolutionApplied",
    "HistoryEvent",
    "LotInstallation",
    "MaintenanceChecklist",
    "Document",
    # 幂等台账
    "DisassembleOperation",
    "OperationStatusEnum",
]
