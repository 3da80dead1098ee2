# 资产拆解服务 - 应用入口文件
#
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from dotenv import load_dotenv

# 首先加载环境变量
load_dotenv()

from app.core.config import settings
from app.core.exceptions import DisassembleError, ErrorKind
from app.api.v1.routers import api_router
from app.core.logging_config import get_logger
from app.middleware.logging_middleware import LoggingMiddleware
from app.schemas.asset_schemas import ResponseCode

logger = get_logger(__name__)
from app.db.session import engine, Base
from app import models  # noqa: F401  导入所有模型


# 数据库初始化
def create_database_if_not_exists():
    """自动创建MySQL数据库（如果不存在）；配置了 DATABASE_URL 时跳过"""
    if settings.DATABASE_URL:
        return

    import pymysql

    try:
        connection = pymysql.connect(
            host=settings.MYSQL_HOST,
            port=settings.MYSQL_PORT,
            user=settings.MYSQL_USER,
            password=settings.MYSQL_PASSWORD,
            charset='utf8mb4'
        )
        try:
            with connection.cursor() as cursor:
                cursor.execute("SHOW DATABASES LIKE %s", (settings.MYSQL_DB,))
                if cursor.fetchone():
                    logger.info("Database '%s' already exists", settings.MYSQL_DB)
                else:
                    cursor.execute(
                        f"CREATE DATABASE `{settings.MYSQL_DB}` "
                        f"CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
                    )
                    logger.info("Database '%s' created successfully", settings.MYSQL_DB)
        finally:
            connection.close()
    except pymysql.MySQLError as e:
        logger.warning("Failed to check/create database: %s, assuming database exists...", e)


def create_tables():
    """创建数据库表"""
    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    logger.info("Application starting up...")

    if settings.AUTO_CREATE_TABLES:
        create_database_if_not_exists()
        create_tables()

    yield

    logger.info("Application is shutting down...")
    engine.dispose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="资产拆解服务 - 将资产的部件树拆分为独立资产、删除或孤立部件，并迁移全部依附记录",
    lifespan=lifespan,
    default_response_class=ORJSONResponse,  # 使用ORJSON确保中文UTF-8编码正确
)


# 全局异常处理器 - 统一响应格式
ERROR_CODE_MAPPING = {
    ErrorKind.INVALID_INPUT: ResponseCode.PARAM_ERROR,
    ErrorKind.CONFLICT: ResponseCode.CONFLICT,
    ErrorKind.NOT_FOUND: ResponseCode.NOT_FOUND,
    ErrorKind.FORBIDDEN: ResponseCode.PERMISSION_DENIED,
    ErrorKind.TRANSACTION_FAILURE: ResponseCode.DATABASE_ERROR,
}


@app.exception_handler(DisassembleError)
async def disassemble_exception_handler(request: Request, exc: DisassembleError):
    """拆解业务异常：返回真实HTTP状态码，data 中携带错误类别和是否可重试"""
    return ORJSONResponse(
        status_code=exc.status_code,
        content={
            "code": ERROR_CODE_MAPPING.get(exc.kind, ResponseCode.INTERNAL_ERROR),
            "message": exc.message,
            "data": exc.to_dict(),
        }
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """处理请求参数验证错误，返回统一格式"""
    errors = exc.errors()
    error_messages = []
    for error in errors:
        loc = ".".join(str(x) for x in error.get("loc", []))
        msg = error.get("msg", "")
        error_messages.append(f"{loc}: {msg}")

    return ORJSONResponse(
        status_code=400,
        content={
            "code": ResponseCode.PARAM_ERROR,
            "message": f"参数验证失败: {'; '.join(error_messages)}",
            "data": {"kind": ErrorKind.INVALID_INPUT, "retryable": False, "operationToken": None},
        }
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """处理HTTP异常，返回统一格式"""
    code_mapping = {
        400: ResponseCode.PARAM_ERROR,
        404: ResponseCode.NOT_FOUND,
        403: ResponseCode.PERMISSION_DENIED,
        409: ResponseCode.CONFLICT,
        500: ResponseCode.INTERNAL_ERROR,
    }
    code = code_mapping.get(exc.status_code, ResponseCode.INTERNAL_ERROR)

    return ORJSONResponse(
        status_code=exc.status_code,
        content={
            "code": code,
            "message": str(exc.detail),
            "data": None
        }
    )


# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_CREDENTIALS,
    allow_methods=settings.CORS_METHODS,
    allow_headers=settings.CORS_HEADERS,
)

# Add logging middleware
app.add_middleware(LoggingMiddleware)

# Include API router
app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/")
async def welcome():
    return {
        "message": "Welcome to Asset Disassembly Service",
        "description": "资产拆解服务",
        "docs": "/docs",
        "version": settings.VERSION,
        "features": [
            "部件提升为独立资产",
            "部件子树删除与引用清理",
            "部件孤立",
            "幂等重试与资产级串行化",
        ]
    }


@app.get("/health")
async def health_check():
    """健康检查接口"""
    return {
        "status": "healthy",
        "service": "asset-disassembly",
        "version": settings.VERSION
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG
    )
