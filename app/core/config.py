from typing import List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parent.parent.parent / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Project Info
    PROJECT_NAME: str = Field(default="Asset Disassembly Service", env="PROJECT_NAME")
    VERSION: str = Field(default="1.0.0", env="VERSION")
    API_V1_STR: str = Field(default="/api/v1", env="API_V1_STR")
    DEBUG: bool = Field(default=False, env="DEBUG")

    # Server Settings
    HOST: str = Field(default="0.0.0.0", env="HOST")
    PORT: int = Field(default=8000, env="PORT")
    WORKERS: int = Field(default=1, env="WORKERS")

    # CORS Settings
    CORS_ORIGINS: List[str] = Field(default=["*"], env="CORS_ORIGINS")
    CORS_CREDENTIALS: bool = Field(default=True, env="CORS_CREDENTIALS")
    CORS_METHODS: List[str] = Field(default=["*"], env="CORS_METHODS")
    CORS_HEADERS: List[str] = Field(default=["*"], env="CORS_HEADERS")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", env="LOG_LEVEL")
    LOG_FORMAT: str = Field(default="%(asctime)s - %(name)s - %(levelname)s - %(message)s", env="LOG_FORMAT")

    # File Paths
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    LOGS_DIR: Path = BASE_DIR / "logs"

    # Database Configuration
    # DATABASE_URL 优先于 MySQL 分项配置（PostgreSQL / SQLite 测试库）
    DATABASE_URL: Optional[str] = Field(default=None, env="DATABASE_URL")

    # MySQL Database Settings
    MYSQL_USER: str = Field(default="root", env="MYSQL_USER")
    MYSQL_PASSWORD: str = Field(default="123456", env="MYSQL_PASSWORD")
    MYSQL_HOST: str = Field(default="localhost", env="MYSQL_HOST")
    MYSQL_PORT: int = Field(default=3306, env="MYSQL_PORT")
    MYSQL_DB: str = Field(default="disassembly_db", env="MYSQL_DB")

    # Connection pool
    DB_POOL_SIZE: int = Field(default=10, env="DB_POOL_SIZE")
    DB_MAX_OVERFLOW: int = Field(default=20, env="DB_MAX_OVERFLOW")
    DB_POOL_RECYCLE: int = Field(default=3600, env="DB_POOL_RECYCLE")
    DB_POOL_TIMEOUT: int = Field(default=30, env="DB_POOL_TIMEOUT")
    AUTO_CREATE_TABLES: bool = Field(default=True, env="AUTO_CREATE_TABLES")

    # Disassembly engine
    DISASSEMBLE_LOCK_NAMESPACE: str = Field(default="disassemble", env="DISASSEMBLE_LOCK_NAMESPACE")
    DISASSEMBLE_LOCK_TIMEOUT_SECONDS: float = Field(default=30, env="DISASSEMBLE_LOCK_TIMEOUT_SECONDS")
    DISASSEMBLE_LOCK_POLL_INTERVAL: float = Field(default=0.2, env="DISASSEMBLE_LOCK_POLL_INTERVAL")
    DISASSEMBLE_TRANSACTION_TIMEOUT_SECONDS: int = Field(default=120, env="DISASSEMBLE_TRANSACTION_TIMEOUT_SECONDS")
    PREVENTIVE_TEMPLATE_ENTITY_TYPE: str = Field(
        default="PREVENTIVE_MAINTENANCE_TEMPLATE", env="PREVENTIVE_TEMPLATE_ENTITY_TYPE"
    )

    # Logstash Configuration
    ENABLE_LOGSTASH: bool = Field(default=False, env="ENABLE_LOGSTASH")
    LOGSTASH_HOST: str = Field(default="localhost", env="LOGSTASH_HOST")
    LOGSTASH_PORT: int = Field(default=5000, env="LOGSTASH_PORT")

    @property
    def SQLALCHEMY_DATABASE_URI(self):
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"mysql+pymysql://{self.MYSQL_USER}:{self.MYSQL_PASSWORD}@{self.MYSQL_HOST}:{self.MYSQL_PORT}/{self.MYSQL_DB}?charset=utf8mb4"
        )

    @field_validator("LOGS_DIR")
    def create_logs_dir(cls, v: Path) -> Path:
        """Create logs directory if it doesn't exist."""
        v.mkdir(parents=True, exist_ok=True)
        return v

    @field_validator("CORS_ORIGINS", mode="before")
    def assemble_cors_origins(cls, v: str | List[str]) -> List[str]:
        """Parse CORS origins from string or list."""
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    @field_validator("DISASSEMBLE_LOCK_NAMESPACE")
    def check_lock_namespace(cls, v: str) -> str:
        """Lock keys are '<namespace>:<asset_id>'; the namespace itself must not contain ':'."""
        v = v.strip()
        if not v or ":" in v:
            raise ValueError("DISASSEMBLE_LOCK_NAMESPACE must be a non-empty name without ':'")
        return v


# Create settings instance
settings = Settings()

# Create logs directory if it doesn't exist
settings.LOGS_DIR.mkdir(parents=True, exist_ok=True)
