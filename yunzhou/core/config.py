"""Application configuration loaded from environment variables."""

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Remote store (PostgREST-compatible endpoint)
    store_url: Optional[str] = None
    store_api_key: Optional[str] = None
    store_timeout_seconds: float = 30.0
    store_page_size: int = 1000

    # Redis (configuration persistence)
    redis_host: str = "127.0.0.1"
    redis_port: int = 6379
    redis_db: int = 0
    redis_namespace: str = "yunzhou"

    # Backend
    backend_host: str = "0.0.0.0"
    backend_port: int = 9200

    # Paths (relative to project root)
    schemas_dir: str = "schemas"

    # Bulk writer policy
    initial_batch_size: int = 20
    max_batch_size: int = 100
    batch_growth_factor: float = 1.1
    throttle_seconds: float = 0.05
    cooldown_seconds: float = 2.0

    # Import / metadata policy
    header_scan_rows: int = 10
    detection_threshold: float = 0.5
    hot_window_days: int = 60
    upload_history_limit: int = 10
    business_timezone: str = "Asia/Shanghai"

    @property
    def project_root(self) -> Path:
        return Path(__file__).parent.parent.parent

    model_config = {"env_file": ".env", "env_prefix": "", "extra": "ignore"}


settings = Settings()
