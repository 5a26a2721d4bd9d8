from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  database_url: str = "postgresql+asyncpg://crm:crm@db:5432/crm"
  app_version: str = "v2026-10-16"
  build_sha: str = "dev"
  api_docs_enabled: bool = True
  log_level: str = "INFO"

  cors_origins: str = (
    "http://localhost:5173,http://localhost:3000,"
    "https://lecrm-dev.vercel.app,https://lecrm-stg.vercel.app,https://lecrm.vercel.app"
  )

  business_timezone: str = "UTC"
  gateway_page_size: int = 1000

  renewal_window_days: int = 180
  neglect_threshold_priority_days: int = 30  # segments A/B
  neglect_threshold_default_days: int = 90
  status_update_max_attempts: int = 3
  status_update_backoff_seconds: float = 1.0

  scorecard_pass_threshold: int = 70

  cron_secret: str | None = None
  reconcile_loop_enabled: bool = True
  reconcile_interval_seconds: int = 300

  def cors_origin_list(self) -> list[str]:
    return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
