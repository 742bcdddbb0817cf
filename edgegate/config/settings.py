import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return float(value)


@dataclass(frozen=True)
class Settings:
    admission_service_url: str = "http://127.0.0.1:18080"
    admission_timeout: Optional[float] = None
    fail_open_on_unclassified: bool = True
    origin_url: str = "http://localhost:5001"
    redis_host: Optional[str] = None
    redis_port: int = 6379
    overload_limit: int = 100
    overload_window_ms: int = 1000
    log_level: str = "INFO"
    listen_host: str = "0.0.0.0"
    listen_port: int = 8080


def load_settings() -> Settings:
    """Read settings from the environment. Call after load_dotenv()."""
    return Settings(
        admission_service_url=os.getenv("ADMISSION_SERVICE_URL", Settings.admission_service_url),
        admission_timeout=_env_float("ADMISSION_TIMEOUT"),
        fail_open_on_unclassified=_env_bool("ADMISSION_FAIL_OPEN_UNCLASSIFIED", True),
        origin_url=os.getenv("ORIGIN_URL", Settings.origin_url),
        redis_host=os.getenv("REDIS_HOST") or None,
        redis_port=int(os.getenv("REDIS_PORT", Settings.redis_port)),
        overload_limit=int(os.getenv("OVERLOAD_LIMIT", Settings.overload_limit)),
        overload_window_ms=int(os.getenv("OVERLOAD_WINDOW_MS", Settings.overload_window_ms)),
        log_level=os.getenv("LOG_LEVEL", Settings.log_level),
        listen_host=os.getenv("LISTEN_HOST", Settings.listen_host),
        listen_port=int(os.getenv("LISTEN_PORT", Settings.listen_port)),
    )
