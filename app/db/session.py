from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker, declarative_base
from app.core.config import settings


def build_engine(database_uri: str):
    """按数据库类型创建引擎（SQLite 不支持连接池参数）"""
    url = make_url(database_uri)
    if url.get_backend_name() == "sqlite":
        sqlite_engine = create_engine(
            database_uri,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=False,
        )

        # SQLite 默认不校验外键，打开后删除顺序错误会直接报错
        @event.listens_for(sqlite_engine, "connect")
        def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return sqlite_engine
    # 优化连接池配置，防止连接泄漏和死锁
    return create_engine(
        database_uri,
        pool_pre_ping=True,                       # 使用前检查连接是否有效
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_recycle=settings.DB_POOL_RECYCLE,    # 防止MySQL 8小时超时
        pool_timeout=settings.DB_POOL_TIMEOUT,
        echo=False,
    )


engine = build_engine(settings.SQLALCHEMY_DATABASE_URI)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# 依赖注入函数
def get_db():
    """获取数据库会话"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    """获取会话工厂（拆解流程需要自行管理多个独立事务）"""
    return SessionLocal
