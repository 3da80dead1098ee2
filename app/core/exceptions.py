"""
拆解业务异常定义

每个异常携带错误类别（kind）、HTTP状态码以及是否可用同一操作令牌重试，
由 main.py 中的异常处理器统一转换为 {code, message, data} 响应。
"""

from typing import Optional


class ErrorKind:
    INVALID_INPUT = "InvalidInput"
    CONFLICT = "Conflict"
    NOT_FOUND = "NotFound"
    FORBIDDEN = "Forbidden"
    TRANSACTION_FAILURE = "TransactionFailure"


class DisassembleError(Exception):
    """拆解流程异常基类"""

    kind: str = ErrorKind.TRANSACTION_FAILURE
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, operation_token: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.operation_token = operation_token

    def to_dict(self):
        return {
            "kind": self.kind,
            "retryable": self.retryable,
            "operationToken": self.operation_token,
        }


class InvalidInputError(DisassembleError):
    """请求参数错误：在访问台账和加锁之前拒绝"""
    kind = ErrorKind.INVALID_INPUT
    status_code = 400


class ConflictError(DisassembleError):
    """同一令牌的操作正在进行中，或资产锁获取超时"""
    kind = ErrorKind.CONFLICT
    status_code = 409
    retryable = True


class NotFoundError(DisassembleError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class ForbiddenError(DisassembleError):
    """跨租户访问"""
    kind = ErrorKind.FORBIDDEN
    status_code = 403


class TransactionFailureError(DisassembleError):
    """事务执行期间的底层存储错误，事务已整体回滚"""
    kind = ErrorKind.TRANSACTION_FAILURE
    status_code = 500
    retryable = True
