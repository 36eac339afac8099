"""Tests for ServiceConfig dataclass."""

import pytest

from pingone_bulk.core.config import ServiceConfig


def test_default_config():
    """Test default ServiceConfig values."""
    cfg = ServiceConfig()
    assert cfg.region == "com"
    assert cfg.request_timeout == 10.0
    assert cfg.token_cache_seconds == 3000
    assert cfg.token_buffer_seconds == 120
    assert cfg.job_retention_seconds == 300.0
    assert cfg.log_file == "logs/import-status.log"
    assert not cfg.has_credentials


def test_region_urls():
    cfg = ServiceConfig(region="eu")
    assert cfg.auth_base_url == "https://auth.pingone.eu"
    assert cfg.api_base_url == "https://api.pingone.eu/v1"


def test_unknown_region_rejected():
    with pytest.raises(ValueError):
        ServiceConfig(region="mars")


def test_from_env():
    """Test loading config from environment variables."""
    cfg = ServiceConfig.from_env(
        {
            "PINGONE_ENVIRONMENT_ID": "env-1",
            "PINGONE_CLIENT_ID": "client-1",
            "PINGONE_CLIENT_SECRET": "secret",
            "PINGONE_REGION": "CA",
            "PINGONE_TOKEN_CACHE_SECONDS": "600",
            "BULK_JOB_RETENTION_SECONDS": "5",
            "BULK_LOG_LEVEL": "debug",
            "BULK_LOG_FILE": "",
            "BULK_PORT": "9000",
        }
    )
    assert cfg.environment_id == "env-1"
    assert cfg.has_credentials
    assert cfg.region == "ca"
    assert cfg.token_cache_seconds == 600
    assert cfg.job_retention_seconds == 5.0
    assert cfg.log_level == "DEBUG"
    assert cfg.log_file is None
    assert cfg.port == 9000


def test_from_env_defaults():
    cfg = ServiceConfig.from_env({})
    assert cfg == ServiceConfig()
