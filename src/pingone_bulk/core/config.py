from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

REGIONS = ("com", "eu", "asia", "ca")


def _env_str(environ: Mapping[str, str], key: str, default: Optional[str]) -> Optional[str]:
    value = environ.get(key)
    if value is None:
        return default
    value = value.strip()
    return value or None


@dataclass
class ServiceConfig:
    environment_id: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    region: str = "com"
    request_timeout: float = 10.0
    token_cache_seconds: int = 50 * 60
    token_buffer_seconds: int = 2 * 60
    job_retention_seconds: float = 300.0
    log_level: str = "INFO"
    log_file: str | None = "logs/import-status.log"
    summary_log: str | None = "logs/job-summaries.jsonl"
    host: str = "127.0.0.1"
    port: int = 8000

    def __post_init__(self) -> None:
        if self.region not in REGIONS:
            raise ValueError(f"Unknown PingOne region {self.region!r}; expected one of {', '.join(REGIONS)}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> ServiceConfig:
        """Build a config from ``PINGONE_*`` and ``BULK_*`` environment variables."""
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            environment_id=_env_str(env, "PINGONE_ENVIRONMENT_ID", None),
            client_id=_env_str(env, "PINGONE_CLIENT_ID", None),
            client_secret=_env_str(env, "PINGONE_CLIENT_SECRET", None),
            region=(env.get("PINGONE_REGION") or defaults.region).strip().lower(),
            request_timeout=float(env.get("PINGONE_REQUEST_TIMEOUT", defaults.request_timeout)),
            token_cache_seconds=int(env.get("PINGONE_TOKEN_CACHE_SECONDS", defaults.token_cache_seconds)),
            token_buffer_seconds=int(env.get("PINGONE_TOKEN_BUFFER_SECONDS", defaults.token_buffer_seconds)),
            job_retention_seconds=float(env.get("BULK_JOB_RETENTION_SECONDS", defaults.job_retention_seconds)),
            log_level=env.get("BULK_LOG_LEVEL", defaults.log_level).upper(),
            log_file=_env_str(env, "BULK_LOG_FILE", defaults.log_file),
            summary_log=_env_str(env, "BULK_SUMMARY_LOG", defaults.summary_log),
            host=env.get("BULK_HOST", defaults.host),
            port=int(env.get("BULK_PORT", defaults.port)),
        )

    @property
    def auth_base_url(self) -> str:
        return f"https://auth.pingone.{self.region}"

    @property
    def api_base_url(self) -> str:
        return f"https://api.pingone.{self.region}/v1"

    @property
    def has_credentials(self) -> bool:
        return bool(self.environment_id and self.client_id and self.client_secret)
