import os
from typing import Optional

from pydantic import BaseModel


class Settings(BaseModel):
    """Runtime configuration for the cache and the content proxy.

    Notes
    -----
    - Defaults are used as-is unless `Settings.from_env()` is called, which
      reads `APPCACHE_*` environment variables for the same field names.
      The ASGI app in `appcache.main` is built that way.
    - Cache TTLs are expressed in milliseconds, matching the timestamps stored
      on each entry. Intervals that drive background tasks are in seconds.
    """

    # default entry TTL (in milliseconds)
    cache_ttl_medium_ms: int = 30 * 60 * 1000  # 30 minutes

    # 10x the number of stored log records
    cache_max_size: int = 100 * 10
    cleanup_interval_seconds: float = 5 * 60

    storage_key: str = "app_cache"
    storage_dir: Optional[str] = None

    content_base_url: str = "http://localhost:3000/api"
    content_timeout_seconds: float = 20
    content_ttl_ms: int = 30 * 60 * 1000

    environment: str = "development"
    log_level: Optional[str] = None

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @classmethod
    def from_env(cls, prefix: str = "APPCACHE_") -> "Settings":
        """Build settings from environment variables.

        Each field can be overridden by `<prefix><FIELD_NAME>` (upper case),
        e.g. `APPCACHE_CACHE_MAX_SIZE=500`. Values are validated by pydantic,
        so numeric strings are coerced to the field type.
        """

        values = {}
        for name in cls.model_fields:
            raw = os.environ.get(f"{prefix}{name.upper()}")
            if raw is not None:
                values[name] = raw
        return cls(**values)


settings = Settings()
