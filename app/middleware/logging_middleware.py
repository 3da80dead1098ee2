"""
日志中间件

记录所有HTTP请求和响应：
- 请求方法、路径、参数
- 响应状态码、处理时间
- 租户、操作人、IP地址（拆解接口通过 X-Tenant-Id / X-Operator 传入）
"""

import time
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from app.core.logging_config import get_logger

logger = get_logger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """HTTP请求/响应日志中间件"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        request_id = request.headers.get("X-Request-ID", "")
        client_host = request.client.host if request.client else "unknown"
        method = request.method
        path = request.url.path
        query_params = str(request.query_params) if request.query_params else ""
        context = {
            "client_ip": client_host,
            "query": query_params,
            "request_id": request_id,
            "tenant_id": request.headers.get("X-Tenant-Id", ""),
            "operator": request.headers.get("X-Operator", ""),
        }

        try:
            response = await call_next(request)

            process_time = time.time() - start_time
            response.headers["X-Process-Time"] = f"{process_time:.3f}"
            if request_id:
                response.headers["X-Request-ID"] = request_id

            log = logger.warning if response.status_code >= 500 else logger.info
            log(
                "HTTP %s %s -> %s (%.3fs)",
                method,
                path,
                response.status_code,
                process_time,
                extra=context,
            )
            return response

        except Exception as e:
            logger.exception("HTTP %s %s failed: %s", method, path, str(e), extra=context)
            # 重新抛出异常，让FastAPI的异常处理器处理
            raise
