from __future__ import annotations

from pydantic import ValidationError
import pytest

from courtside.core.config import Settings


def test_sweep_interval_must_stay_under_half_the_quick_hold():
    assert Settings(sweep_interval_seconds=150).sweep_interval_seconds == 150

    with pytest.raises(ValidationError):
        Settings(sweep_interval_seconds=151)
    with pytest.raises(ValidationError):
        Settings(sweep_interval_seconds=0)


def test_environment_from_site_mode():
    assert Settings(site_mode="PROD").environment == "production"
    assert Settings(site_mode="ci").environment == "testing"
    assert Settings(site_mode="local").environment == "development"
    assert Settings(site_mode="").environment == "development"


def test_urls_lose_trailing_slash():
    cfg = Settings(frontend_url="https://play.example.com/", public_api_url="https://api.example.com//")
    assert cfg.frontend_url == "https://play.example.com"
    assert cfg.public_api_url == "https://api.example.com"


def test_payos_configured_requires_all_credentials():
    assert Settings(payos_client_id="", payos_api_key="k", payos_checksum_key="c").payos_configured is False
    assert Settings(payos_client_id="id", payos_api_key="", payos_checksum_key="c").payos_configured is False
    assert Settings(payos_client_id="id", payos_api_key="k", payos_checksum_key="c").payos_configured is True


def test_is_sqlite():
    assert Settings(database_url="sqlite:///./x.db").is_sqlite is True
    assert Settings(database_url="postgresql://u:p@localhost/db").is_sqlite is False
