from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_floats(raw: str) -> tuple[float, ...]:
    return tuple(float(part) for part in raw.split(",") if part.strip())


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    metrics_enabled: bool = Field(default=True, alias="METRICS_ENABLED")
    web_metrics_enabled: bool = Field(default=True, alias="METRICS_BINDERS_WEB_ENABLED")
    web_server_percentiles_raw: str = Field(default="", alias="METRICS_BINDERS_WEB_SERVER_PERCENTILES")
    web_client_percentiles_raw: str = Field(default="", alias="METRICS_BINDERS_WEB_CLIENT_PERCENTILES")
    web_server_slos_raw: str = Field(default="", alias="METRICS_BINDERS_WEB_SERVER_SLOS")
    web_client_slos_raw: str = Field(default="", alias="METRICS_BINDERS_WEB_CLIENT_SLOS")

    enable_metrics_endpoint: bool = Field(default=True, alias="ENABLE_METRICS_ENDPOINT")
    metrics_endpoint_path: str = Field(default="/metrics", alias="METRICS_ENDPOINT_PATH")

    http_client_timeout_s: float = Field(default=30, alias="HTTPX_TIMEOUT_S")
    http_client_max_connections: int = Field(default=200, alias="HTTPX_MAX_CONNECTIONS")
    http_client_max_keepalive: int = Field(default=100, alias="HTTPX_MAX_KEEPALIVE")

    @field_validator("web_server_percentiles_raw", "web_client_percentiles_raw")
    @classmethod
    def _check_percentiles(cls, value: str) -> str:
        for p in _parse_floats(value):
            if not 0.0 <= p <= 1.0:
                raise ValueError(f"percentile {p} is outside [0, 1]")
        return value

    @field_validator("web_server_slos_raw", "web_client_slos_raw")
    @classmethod
    def _check_slos(cls, value: str) -> str:
        for bound in _parse_floats(value):
            if bound <= 0:
                raise ValueError(f"SLO bucket {bound} must be positive")
        return value

    @property
    def web_metrics_active(self) -> bool:
        return self.metrics_enabled and self.web_metrics_enabled

    @property
    def web_server_percentiles(self) -> tuple[float, ...]:
        return _parse_floats(self.web_server_percentiles_raw)

    @property
    def web_client_percentiles(self) -> tuple[float, ...]:
        return _parse_floats(self.web_client_percentiles_raw)

    @property
    def web_server_slos(self) -> tuple[float, ...]:
        return tuple(sorted(set(_parse_floats(self.web_server_slos_raw))))

    @property
    def web_client_slos(self) -> tuple[float, ...]:
        return tuple(sorted(set(_parse_floats(self.web_client_slos_raw))))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
