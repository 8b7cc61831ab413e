"""Application Settings - Central Configuration"""
from functools import lru_cache
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # MongoDB
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "approval_workflow_dev"

    # Logging
    logs_path: str = "./logs"
    log_level: str = "INFO"

    # CORS - set to "*" to allow all origins
    cors_origins: str = "*"

    # Rule evaluation
    default_rule_action: str = "AutoApprove"
    stop_on_first_match: bool = False

    # Scheduler
    scheduler_enabled: bool = True
    escalation_interval_minutes: int = 120
    reminder_interval_minutes: int = 360
    overdue_interval_minutes: int = 60
    monitoring_interval_minutes: int = 60
    cleanup_interval_minutes: int = 1440

    # Sweep thresholds
    escalation_threshold_hours: int = 48
    reminder_threshold_hours: int = 24
    reminder_suppression_hours: int = 12
    sweep_batch_size: int = 200

    # Monitoring
    monitoring_pending_threshold: int = 100
    monitoring_stale_escalation_days: int = 7
    monitoring_alert_recipients: str = ""

    # Data retention
    notification_retention_days: int = 30
    workflow_retention_days: int = 30
    escalation_retention_days: int = 90

    # Environment
    environment: str = "development"
    debug: bool = True

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins string to list"""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def monitoring_alert_recipients_list(self) -> List[str]:
        """Parse alert recipients string to list"""
        return [r.strip() for r in self.monitoring_alert_recipients.split(",") if r.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.environment.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
