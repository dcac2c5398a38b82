from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "campaign-sync-api"
    environment: str = "dev"
    api_key_header: str = "X-API-Key"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    unassigned_engagement_id: str = "00000000-0000-0000-0000-000000000000"
    stuck_syncing_minutes: float = 5.0
    stuck_idle_minutes: float = 10.0
    stuck_recent_update_minutes: float = 2.0
    stuck_hard_ceiling_minutes: float = 30.0
    recovery_max_attempts_per_window: int = 3
    recovery_attempt_window_minutes: float = 60.0
    recovery_attempt_log_size: int = 10
    recovery_lease_seconds: int = 120
    recovery_lease_owner: str = "campaign-sync-recovery"
    sync_functions_base_url: str = "http://localhost:54321"
    sync_function_path_template: str = "/functions/v1/{platform}-sync"
    sync_service_key: str | None = None
    sync_timeout_seconds: float = 30.0
    nocodb_base_url: str | None = None
    nocodb_api_token: str | None = None
    nocodb_smartlead_table_id: str | None = None
    nocodb_replyio_table_id: str | None = None
    nocodb_page_size: int = 200
    snapshot_upsert_batch_size: int = 100
    otel_enabled: bool = True
    otel_service_name: str = "campaign-sync-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="CS_", extra="ignore")


class WorkerSettings(BaseSettings):
    environment: str = "dev"
    api_base_url: str = "http://localhost:8000"
    module_id: str = "local-scheduler"
    api_key: str = "local-scheduler-key"
    request_timeout_seconds: float = 120.0
    otel_enabled: bool = True
    otel_service_name: str = "campaign-sync-worker"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="CS_WORKER_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()


@lru_cache
def get_worker_settings() -> WorkerSettings:
    return WorkerSettings()
