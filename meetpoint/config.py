"""Settings loaded from the environment (and a local .env file)."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

PLACEHOLDER_API_KEY = 'your_api_key_here'


@dataclass(frozen=True)
class Settings:
    google_maps_api_key: Optional[str]
    maps_max_workers: int = 10
    maps_timeout_seconds: int = 10
    midpoint_cache_ttl: int = 300
    time_midpoint_cache_ttl: int = 600
    routes_cache_ttl: int = 300
    cache_sweep_interval: int = 60
    cache_max_entries: int = 1000
    venue_category: str = 'cafe'
    venue_search_radius: int = 1000
    log_level: str = 'INFO'
    log_file: str = 'app.log'

    @property
    def maps_configured(self) -> bool:
        return bool(self.google_maps_api_key)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer for %s=%r; using default %s", name, raw, default)
        return default


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    api_key = os.getenv('GOOGLE_MAPS_API_KEY')
    if not api_key or api_key == PLACEHOLDER_API_KEY:
        logger.warning("GOOGLE_MAPS_API_KEY not found or not configured in environment variables")
        api_key = None

    return Settings(
        google_maps_api_key=api_key,
        maps_max_workers=_int_env('MAPS_MAX_WORKERS', 10),
        maps_timeout_seconds=_int_env('MAPS_TIMEOUT_SECONDS', 10),
        midpoint_cache_ttl=_int_env('MIDPOINT_CACHE_TTL', 300),
        time_midpoint_cache_ttl=_int_env('TIME_MIDPOINT_CACHE_TTL', 600),
        routes_cache_ttl=_int_env('ROUTES_CACHE_TTL', 300),
        cache_sweep_interval=_int_env('CACHE_SWEEP_INTERVAL', 60),
        cache_max_entries=_int_env('CACHE_MAX_ENTRIES', 1000),
        venue_category=os.getenv('VENUE_CATEGORY', 'cafe') or 'cafe',
        venue_search_radius=_int_env('VENUE_SEARCH_RADIUS', 1000),
        log_level=(os.getenv('LOG_LEVEL', 'INFO') or 'INFO').upper(),
        log_file=os.getenv('LOG_FILE', 'app.log'),
    )
