"""Configuration management for the sales workflow orchestrator."""

import os
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from .models.core import ResiliencePolicy


ENV_PREFIX = "SALESFLOW_"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AppConfig(BaseModel):
    """Application configuration settings."""

    # Application settings
    app_name: str = Field(default="Sales Workflow Orchestrator", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server settings
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    reload: bool = Field(default=False, description="Enable auto-reload in development")

    # State store settings; empty URL keeps execution history in memory
    database_url: str = Field(default="", description="Database connection URL for the execution state store")
    database_echo: bool = Field(default=False, description="Enable SQLAlchemy query logging")

    # Step resilience defaults
    step_timeout: float = Field(default=30.0, description="Default step timeout in seconds")
    max_retries: int = Field(default=3, description="Default retries after the first attempt")
    retry_backoff: float = Field(default=1.0, description="Base retry delay in seconds")
    max_retry_backoff: float = Field(default=30.0, description="Upper bound for a single retry delay")
    retry_jitter: bool = Field(default=True, description="Randomize retry delays")
    breaker_failure_threshold: int = Field(default=3, description="Consecutive failures before a breaker opens")
    breaker_recovery_timeout: float = Field(default=60.0, description="Seconds an open breaker rejects calls")

    # Orchestrator settings
    execution_retention: float = Field(default=300.0, description="Seconds a finished execution stays in the active set")
    eviction_interval: float = Field(default=30.0, description="Seconds between active set sweeps")
    max_trigger_depth: int = Field(default=5, description="Maximum workflow-to-workflow trigger depth")
    max_concurrent_workflows: int = Field(default=50, description="Maximum concurrently running executions")
    history_limit: int = Field(default=50, description="Default number of history records returned")
    load_default_workflows: bool = Field(default=True, description="Register the bundled sales workflows at startup")

    # Logging settings
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format"
    )
    log_file: Optional[str] = Field(default=None, description="Log file path")
    log_structured: bool = Field(default=False, description="Emit JSON log lines")
    log_max_size: int = Field(default=10485760, description="Maximum log file size in bytes")  # 10MB
    log_backup_count: int = Field(default=5, description="Number of log backup files to keep")

    # Health and monitoring settings
    health_check_timeout: float = Field(default=5.0, description="Health check timeout in seconds")
    slow_request_threshold: float = Field(default=5.0, description="Slow request threshold in seconds")
    enable_performance_monitoring: bool = Field(default=True, description="Enable performance monitoring middleware")

    # Security settings
    cors_origins: list = Field(default=["*"], description="CORS allowed origins")
    cors_methods: list = Field(default=["GET", "POST", "PUT", "DELETE"], description="CORS allowed methods")

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v):
        """Validate database URL format."""
        if not v:
            return v
        supported_schemes = ['sqlite', 'postgresql', 'mysql']
        scheme = v.split('://')[0].split('+')[0].lower()
        if scheme not in supported_schemes:
            raise ValueError(f"Unsupported database scheme: {scheme}. Supported: {supported_schemes}")
        return v

    @field_validator('port')
    @classmethod
    def validate_port(cls, v):
        """Validate port number."""
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator('max_concurrent_workflows', 'breaker_failure_threshold', 'max_trigger_depth', 'history_limit')
    @classmethod
    def validate_positive_counts(cls, v):
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @field_validator('max_retries')
    @classmethod
    def validate_max_retries(cls, v):
        if v < 0:
            raise ValueError("Retries cannot be negative")
        return v

    @field_validator('step_timeout', 'eviction_interval')
    @classmethod
    def validate_timeouts(cls, v):
        """Validate timeout values."""
        if v <= 0:
            raise ValueError("Timeout must be positive")
        return v

    @field_validator('retry_backoff', 'max_retry_backoff', 'breaker_recovery_timeout', 'execution_retention')
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("Duration cannot be negative")
        return v

    @property
    def uses_database(self) -> bool:
        """Whether executions are persisted through SQLAlchemy."""
        return bool(self.database_url)

    @property
    def is_sqlite(self) -> bool:
        """Check if using SQLite database."""
        return self.database_url.lower().startswith("sqlite")

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return not self.debug and not self.reload

    def get_database_connect_args(self) -> Dict[str, Any]:
        """Get database connection arguments based on database type."""
        if self.is_sqlite:
            return {"check_same_thread": False}
        return {}

    def get_uvicorn_config(self) -> Dict[str, Any]:
        """Get Uvicorn server configuration."""
        return {
            "host": self.host,
            "port": self.port,
            "reload": self.reload,
            "log_level": self.log_level.value.lower(),
            "access_log": self.debug
        }

    def default_resilience_policy(self) -> ResiliencePolicy:
        """Process-wide step defaults that per-step settings overlay."""
        return ResiliencePolicy(
            timeout_seconds=self.step_timeout,
            max_retries=self.max_retries,
            backoff_seconds=self.retry_backoff,
            max_backoff_seconds=self.max_retry_backoff,
            jitter=self.retry_jitter,
            failure_threshold=self.breaker_failure_threshold,
            recovery_timeout_seconds=self.breaker_recovery_timeout,
        )

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Create configuration from environment variables."""
        def get_env(key: str, default=None, type_func=str):
            """Get environment variable with type conversion."""
            value = os.getenv(f"{ENV_PREFIX}{key}")
            if value is None:
                return default
            if type_func == bool:
                return str(value).lower() in ('true', '1', 'yes', 'on')
            elif type_func == list:
                return value.split(',') if value else default
            return type_func(value)

        return cls(
            app_name=get_env("APP_NAME", "Sales Workflow Orchestrator"),
            app_version=get_env("APP_VERSION", "1.0.0"),
            debug=get_env("DEBUG", False, bool),
            host=get_env("HOST", "0.0.0.0"),
            port=get_env("PORT", 8000, int),
            reload=get_env("RELOAD", False, bool),
            database_url=get_env("DATABASE_URL", ""),
            database_echo=get_env("DATABASE_ECHO", False, bool),
            step_timeout=get_env("STEP_TIMEOUT", 30.0, float),
            max_retries=get_env("MAX_RETRIES", 3, int),
            retry_backoff=get_env("RETRY_BACKOFF", 1.0, float),
            max_retry_backoff=get_env("MAX_RETRY_BACKOFF", 30.0, float),
            retry_jitter=get_env("RETRY_JITTER", True, bool),
            breaker_failure_threshold=get_env("BREAKER_FAILURE_THRESHOLD", 3, int),
            breaker_recovery_timeout=get_env("BREAKER_RECOVERY_TIMEOUT", 60.0, float),
            execution_retention=get_env("EXECUTION_RETENTION", 300.0, float),
            eviction_interval=get_env("EVICTION_INTERVAL", 30.0, float),
            max_trigger_depth=get_env("MAX_TRIGGER_DEPTH", 5, int),
            max_concurrent_workflows=get_env("MAX_CONCURRENT_WORKFLOWS", 50, int),
            history_limit=get_env("HISTORY_LIMIT", 50, int),
            load_default_workflows=get_env("LOAD_DEFAULT_WORKFLOWS", True, bool),
            log_level=LogLevel(get_env("LOG_LEVEL", "INFO").upper()),
            log_format=get_env("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
            log_file=get_env("LOG_FILE", None),
            log_structured=get_env("LOG_STRUCTURED", False, bool),
            log_max_size=get_env("LOG_MAX_SIZE", 10485760, int),
            log_backup_count=get_env("LOG_BACKUP_COUNT", 5, int),
            health_check_timeout=get_env("HEALTH_CHECK_TIMEOUT", 5.0, float),
            slow_request_threshold=get_env("SLOW_REQUEST_THRESHOLD", 5.0, float),
            enable_performance_monitoring=get_env("ENABLE_PERFORMANCE_MONITORING", True, bool),
            cors_origins=get_env("CORS_ORIGINS", ["*"], list),
            cors_methods=get_env("CORS_METHODS", ["GET", "POST", "PUT", "DELETE"], list),
        )


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def load_config(config_file: Optional[str] = None) -> AppConfig:
    """Load configuration from a .env file and environment variables."""
    global _config

    if config_file and os.path.exists(config_file):
        from dotenv import load_dotenv
        load_dotenv(config_file)
    elif os.path.exists('.env'):
        from dotenv import load_dotenv
        load_dotenv('.env')

    _config = AppConfig.from_env()
    return _config


def reset_config():
    """Reset the global configuration instance (mainly for testing)."""
    global _config
    _config = None


def validate_config(config: AppConfig) -> None:
    """Validate configuration settings that depend on the environment."""
    errors = []

    if config.is_sqlite:
        db_path = config.database_url.split("///", 1)[-1]
        db_dir = os.path.dirname(db_path)
        if db_path != ":memory:" and db_dir and not os.path.exists(db_dir):
            try:
                os.makedirs(db_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create database directory {db_dir}: {e}")

    if config.log_file:
        log_dir = os.path.dirname(config.log_file)
        if log_dir and not os.path.exists(log_dir):
            try:
                os.makedirs(log_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create log directory {log_dir}: {e}")

    if config.max_retry_backoff < config.retry_backoff:
        errors.append("max_retry_backoff must not be smaller than retry_backoff")

    if errors:
        raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")


# Environment-specific configurations
def get_development_config() -> AppConfig:
    """Get development configuration."""
    return AppConfig(
        debug=True,
        reload=True,
        log_level=LogLevel.DEBUG,
        database_url="sqlite:///./salesflow.db",
        database_echo=True,
    )


def get_production_config() -> AppConfig:
    """Get production configuration."""
    return AppConfig(
        debug=False,
        reload=False,
        log_level=LogLevel.INFO,
        log_structured=True,
        database_echo=False,
        cors_origins=[]  # Restrict CORS in production
    )


def get_testing_config() -> AppConfig:
    """Get testing configuration."""
    return AppConfig(
        debug=True,
        database_url="",
        log_level=LogLevel.WARNING,
        step_timeout=2.0,
        max_retries=2,
        retry_backoff=0.001,
        max_retry_backoff=0.01,
        retry_jitter=False,
        breaker_recovery_timeout=0.05,
        execution_retention=60.0,
        eviction_interval=1.0,
        max_concurrent_workflows=10,
    )
