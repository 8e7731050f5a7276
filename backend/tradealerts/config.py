from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import List
from urllib.parse import urlparse


def _load_dotenv(path: str = ".env") -> None:
    candidates = [Path(path)]
    resolved = Path(__file__).resolve()
    for parent in resolved.parents:
        candidates.append(parent / ".env")
    seen: set[Path] = set()
    for env_path in candidates:
        if env_path in seen or not env_path.exists():
            continue
        seen.add(env_path)
        for raw in env_path.read_text(encoding="utf-8").splitlines():
            line = raw.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip('"').strip("'")
            os.environ.setdefault(key, value)


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        parsed = json.loads(raw)
        if isinstance(parsed, list):
            return [str(item) for item in parsed]
    except json.JSONDecodeError:
        pass
    return [token.strip() for token in raw.split(",") if token.strip()] or default


@dataclass
class Settings:
    app_name: str = "TradeAlerts API"
    environment: str = "development"
    log_level: str = "INFO"

    frontend_origins: List[str] = field(default_factory=lambda: ["http://localhost:8081", "http://localhost:19006"])

    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_key: str = ""

    polygon_api_key: str = ""
    polygon_api_url: str = "https://api.polygon.io"

    expo_push_url: str = "https://exp.host/--/api/v2/push/send"
    expo_access_token: str = ""

    functions_base_url: str = ""
    function_secret: str = ""

    http_timeout_seconds: float = 10.0
    notify_batch_size: int = 50
    signal_max_levels: int = 10
    deep_link_scheme: str = "app://trading"

    @property
    def service_token(self) -> str:
        return self.function_secret or self.supabase_service_key


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value.strip())
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def _validate_settings(settings: Settings) -> None:
    if settings.environment.lower() == "production":
        required = {
            "SUPABASE_URL": settings.supabase_url,
            "SUPABASE_SERVICE_KEY": settings.supabase_service_key,
        }
        missing = [key for key, value in required.items() if not str(value or "").strip()]
        if missing:
            raise RuntimeError(f"Missing required production environment variables: {', '.join(sorted(missing))}")

    invalid_origins = [origin for origin in settings.frontend_origins if not _is_http_url(origin)]
    if invalid_origins:
        raise RuntimeError(f"Invalid FRONTEND_ORIGINS entries: {', '.join(invalid_origins)}")

    if settings.functions_base_url and not _is_http_url(settings.functions_base_url):
        raise RuntimeError(f"Invalid FUNCTIONS_BASE_URL: {settings.functions_base_url}")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    _load_dotenv()
    settings = Settings(
        app_name=_env("APP_NAME", "TradeAlerts API"),
        environment=_env("ENVIRONMENT", "development"),
        log_level=_env("LOG_LEVEL", "INFO"),
        frontend_origins=_env_list("FRONTEND_ORIGINS", ["http://localhost:8081", "http://localhost:19006"]),
        supabase_url=_env("SUPABASE_URL"),
        supabase_key=_env("SUPABASE_KEY"),
        supabase_service_key=(
            _env("SUPABASE_SERVICE_KEY") or _env("SERVICE_ROLE_KEY") or _env("SUPABASE_SERVICE_ROLE_KEY")
        ),
        polygon_api_key=_env("POLYGON_API_KEY"),
        polygon_api_url=_env("POLYGON_API_URL", "https://api.polygon.io"),
        expo_push_url=_env("EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send"),
        expo_access_token=_env("EXPO_ACCESS_TOKEN"),
        functions_base_url=_env("FUNCTIONS_BASE_URL").rstrip("/"),
        function_secret=_env("FUNCTION_SECRET"),
        http_timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", 10.0),
        notify_batch_size=_env_int("NOTIFY_BATCH_SIZE", 50),
        signal_max_levels=_env_int("SIGNAL_MAX_LEVELS", 10),
        deep_link_scheme=_env("DEEP_LINK_SCHEME", "app://trading").rstrip("/"),
    )
    _validate_settings(settings)
    return settings
