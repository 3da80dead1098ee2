"""
资产级排他锁

锁键为 "<namespace>:<assetId>"，与其他同样以资产ID加锁的业务（如单部件提升）
处于不同的键空间，不会互相串行化。调用方应在 with 块内提交或回滚事务。
"""

import math
import threading
import time
import weakref
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import ConflictError
from app.core.logging_config import get_logger

logger = get_logger(__name__)

# 非 MySQL/PostgreSQL 数据库（SQLite）使用进程内命名锁，无人持有引用时条目自动移除
_LOCAL_LOCKS: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
_LOCAL_LOCKS_GUARD = threading.Lock()


def _local_lock(key: str) -> threading.Lock:
    with _LOCAL_LOCKS_GUARD:
        lock = _LOCAL_LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _LOCAL_LOCKS[key] = lock
        return lock


class LockCoordinator:
    """按数据库方言选择加锁方式，获取超时抛出 ConflictError"""

    def __init__(
        self,
        namespace: Optional[str] = None,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ):
        self.namespace = namespace or settings.DISASSEMBLE_LOCK_NAMESPACE
        self.timeout = settings.DISASSEMBLE_LOCK_TIMEOUT_SECONDS if timeout is None else timeout
        self.poll_interval = settings.DISASSEMBLE_LOCK_POLL_INTERVAL if poll_interval is None else poll_interval

    def lock_key(self, asset_id: int) -> str:
        return f"{self.namespace}:{asset_id}"

    @contextmanager
    def exclusive_lock(self, db: Session, asset_id: int):
        key = self.lock_key(asset_id)
        dialect = db.get_bind().dialect.name
        started = time.monotonic()

        if dialect == "mysql":
            with self._mysql_lock(db.get_bind(), key):
                self._log_acquired(key, started)
                yield key
        elif dialect == "postgresql":
            self._postgres_lock(db, key)
            self._log_acquired(key, started)
            # 事务级锁：提交或回滚时由数据库自动释放
            yield key
        else:
            with self._process_lock(key):
                self._log_acquired(key, started)
                yield key

    def _log_acquired(self, key: str, started: float):
        logger.info("Lock acquired: key=%s waited=%.3fs", key, time.monotonic() - started)

    def _timeout_error(self, key: str) -> ConflictError:
        logger.warning("Lock wait timeout: key=%s timeout=%ss", key, self.timeout)
        return ConflictError(f"资产正在被其他拆解操作处理，请稍后重试（锁等待超时 {self.timeout} 秒）")

    @contextmanager
    def _mysql_lock(self, bind, key: str):
        # 命名锁属于连接而非事务：使用独立连接持有，业务会话提交后连接归还连接池也不影响锁
        wait_seconds = max(0, int(math.ceil(self.timeout)))
        with bind.connect() as lock_conn:
            acquired = lock_conn.execute(
                text("SELECT GET_LOCK(:key, :timeout)"),
                {"key": key, "timeout": wait_seconds},
            ).scalar()
            if acquired != 1:
                raise self._timeout_error(key)
            try:
                yield
            finally:
                try:
                    lock_conn.execute(text("SELECT RELEASE_LOCK(:key)"), {"key": key})
                except SQLAlchemyError as exc:
                    # 连接关闭时 MySQL 会自动释放命名锁
                    logger.warning("Failed to release lock: key=%s error=%s", key, exc)

    def _postgres_lock(self, db: Session, key: str):
        deadline = time.monotonic() + self.timeout
        statement = text("SELECT pg_try_advisory_xact_lock(hashtextextended(:key, 0))")
        while True:
            if db.execute(statement, {"key": key}).scalar():
                return
            if time.monotonic() >= deadline:
                raise self._timeout_error(key)
            time.sleep(self.poll_interval)

    @contextmanager
    def _process_lock(self, key: str):
        lock = _local_lock(key)
        if not lock.acquire(timeout=max(self.timeout, 0)):
            raise self._timeout_error(key)
        try:
            yield
        finally:
            lock.release()
