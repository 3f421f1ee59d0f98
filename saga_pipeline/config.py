"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    sagas_table: str = "sagas"

    # Backends
    store_backend: str = "supabase"  # "supabase" or "memory"
    queue_backend: str = "redis"  # "redis" or "memory"

    # Redis broker
    redis_url: str = "redis://localhost:6379"
    queue_name: str = "saga-generation"
    redis_max_retries: int = 10
    redis_backoff_base_seconds: float = 0.1
    redis_backoff_cap_seconds: float = 3.0

    # Worker
    worker_autostart: bool = True
    worker_poll_interval_seconds: float = 1.0

    # Saga store
    store_max_cas_retries: int = 5

    # Diagnostics
    stuck_threshold_seconds: int = 300

    # Default generator (local mode)
    generator_pages: int = 5
    generator_panels_per_page: int = 4

    # Service
    compute_port: int = 8001
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
