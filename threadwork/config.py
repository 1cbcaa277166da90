"""
Configuration settings for Threadwork
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-level settings loaded from THREADWORK_* environment variables"""

    model_config = SettingsConfigDict(
        env_prefix="THREADWORK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    env: str = "development"
    log_level: str = "INFO"

    # State storage (relative to the project root)
    state_dir: str = ".threadwork/state"
    hook_log_file: str = "hook-log.json"

    # Token budget
    default_budget: int = 800_000

    # Ralph loop
    max_retries: int = 5
    max_diagnostics: int = 5

    # Process execution
    command_timeout: int = 300


settings = Settings()
