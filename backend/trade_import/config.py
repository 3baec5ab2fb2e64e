"""Application configuration."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # Database
    database_url: str = "sqlite:///./trade_import.db"

    # Import defaults (overridable per import via ImportConfig)
    import_batch_size: int = 100
    import_max_errors: int = 100
    symbol_cache_size: int = 1000
    progress_update_interval_ms: int = 1000
    max_upload_bytes: int = 10 * 1024 * 1024
    # Finished import sessions kept for progress queries; older ones are pruned
    finished_sessions_retained: int = 100

    # Application
    log_level: str = "INFO"
    debug: bool = True

    # CORS
    allowed_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )


settings = Settings()
