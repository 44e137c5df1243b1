"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import List, Optional


class LoanEngineConfig(BaseSettings):
    """Loan financial engine configuration"""

    # Storage configuration
    database_url: str = "memory://"  # memory:// or sqlite:///path/to/file.db
    persistence_timeout_seconds: float = 5.0  # Bound on lock waits and SQLite busy waits

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8091

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Repayment policy
    allocation_order: List[str] = ["penalties", "fees", "interest", "principal"]
    penalty_rate_per_month: str = "0.02"  # 2% of outstanding per started 30 days overdue
    advance_due_date_on_instalment: bool = True

    # Retry policy
    max_conflict_retries: int = 3
    max_unavailable_retries: int = 3
    retry_backoff_seconds: float = 0.05  # Doubled on each Unavailable retry

    # IFRS 9 staging (reference defaults, tunable per organisation)
    stage_2_threshold_days: int = 30   # > this many days overdue -> Stage 2
    stage_3_threshold_days: int = 90   # > this many days overdue -> Stage 3
    stage_1_pd_multiplier: str = "1"
    stage_2_pd_multiplier: str = "1.5"
    stage_3_pd_multiplier: str = "2.5"
    default_probability_of_default: str = "0.05"
    default_loss_given_default: str = "0.45"

    # APR root finder
    apr_max_iterations: int = 100
    apr_tolerance: str = "0.0001"  # Relative change stopping criterion

    # Portfolio batch
    batch_max_workers: int = 4
    par_threshold_days: int = 30

    class Config:
        env_prefix = "LOAN_ENGINE_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = LoanEngineConfig()


def get_config() -> LoanEngineConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LoanEngineConfig:
    """Reload configuration from environment"""
    global config
    config = LoanEngineConfig()
    return config
