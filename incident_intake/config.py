"""
Application configuration management.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Incident store
    redis_url: str = "redis://localhost:6379/0"

    # Tenant remediation configuration (read-only)
    database_url: str = "mysql+aiomysql://root@localhost:3306/interworky"

    # Remediation backend
    remediation_backend_url: str = "http://localhost:3010"
    remediation_timeout_seconds: float = 10.0
    remediation_failure_threshold: int = 5
    remediation_recovery_seconds: int = 60

    # Ingestion limits
    max_batch_size: int = 50
    max_message_length: int = 2000
    max_stack_trace_length: int = 10000

    # Application
    log_level: str = "INFO"


# Global settings instance
settings = Settings()
