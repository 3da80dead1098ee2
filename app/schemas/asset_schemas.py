"""
资产拆解服务 - 通用 Pydantic Schemas
统一响应格式与状态码
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, Any
from datetime import datetime


# =====================================================
# 基础Schema类
# =====================================================

class BaseSchema(BaseModel):
    """基础Schema类"""
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class CamelSchema(BaseModel):
    """对外接口使用驼峰字段名，内部使用下划线字段名"""
    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


# =====================================================
# 标准API响应 Schemas
# =====================================================

class ResponseCode:
    """标准响应状态码"""
    SUCCESS = 0                    # 成功
    PARAM_ERROR = 1001            # 参数错误
    NOT_FOUND = 1002              # 资源不存在
    ALREADY_EXISTS = 1003         # 资源已存在
    PERMISSION_DENIED = 1004      # 权限不足
    CONFLICT = 1005               # 操作冲突（进行中/锁等待超时）
    BAD_REQUEST = 4000            # 请求格式错误
    INTERNAL_ERROR = 5000         # 内部错误
    DATABASE_ERROR = 5001         # 数据库错误


class ApiResponse(BaseSchema):
    """标准API响应格式"""
    code: int = Field(..., description="业务状态码：0-成功，非0-失败")
    message: str = Field(..., description="响应消息")
    data: Optional[Any] = Field(None, description="响应数据")
    timestamp: datetime = Field(default_factory=datetime.now, description="响应时间")

