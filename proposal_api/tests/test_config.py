"""Tests for APISettings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from proposal_api.config import APISettings, PlatformEnv


class TestAPISettings:
    def test_env_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PROPOSALHQ_STRIPE_PRICE_ID", "price_env")
        monkeypatch.setenv("PROPOSALHQ_PLATFORM_ENV", "production")

        settings = APISettings(_env_file=None)

        assert settings.stripe_price_id == "price_env"
        assert settings.platform_env is PlatformEnv.PRODUCTION

    def test_defaults(self) -> None:
        settings = APISettings(_env_file=None)
        assert settings.free_monthly_limit == 3
        assert settings.stripe_webhook_tolerance == 300

    def test_missing_unwraps_secrets(self) -> None:
        settings = APISettings(_env_file=None, stripe_secret_key="sk_test", site_url="")

        assert settings.missing("stripe_secret_key", "stripe_webhook_secret", "site_url") == [
            "stripe_webhook_secret",
            "site_url",
        ]

    def test_secrets_not_in_repr(self) -> None:
        settings = APISettings(_env_file=None, stripe_secret_key="sk_live_secret")
        assert "sk_live_secret" not in repr(settings)

    def test_wildcard_origin_with_credentials_rejected(self) -> None:
        with pytest.raises(ValidationError):
            APISettings(_env_file=None, cors_origins=["*"], cors_allow_credentials=True)
