from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Webvault Worker"
    log_level: str = "INFO"

    # Supabase (PostgREST record store + Storage bucket)
    supabase_url: str = ""
    supabase_key: str = ""        # service_role key; the worker writes every table
    supabase_bucket: str = "archives"
    storage_root_prefix: str = ""

    # Firecrawl rendering
    firecrawl_api_key: str = ""
    firecrawl_url: str = "https://api.firecrawl.dev/v2/scrape"

    # Worker
    worker_poll_interval: float = 5.0
    worker_autostart: bool = False
    asset_concurrency: int = 8

    # Seconds. There are no retries: a timeout fails that call once.
    request_timeout: float = 30.0
    render_timeout: float = 120.0

    @property
    def storage_base(self) -> str:
        return self.supabase_url.rstrip("/") + "/storage/v1"

    @property
    def rest_base(self) -> str:
        return self.supabase_url.rstrip("/") + "/rest/v1"


settings = Settings()
