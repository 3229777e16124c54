"""
Unit tests for settings.
"""
import pytest
from pydantic import ValidationError

from parking_lot.config import Settings

REQUIRED = {
    "stripe_secret_key": "sk_test_abc",
    "database_url": "sqlite+aiosqlite:///:memory:",
    "jwt_secret": "secret",
}


class TestSettings:
    """Test suite for Settings."""

    @pytest.mark.unit
    def test_defaults(self) -> None:
        settings = Settings(**REQUIRED)

        assert settings.stripe_currency == "ron"
        assert settings.is_test_mode
        assert not settings.mail_enabled
        assert settings.redis_url is None

    @pytest.mark.unit
    def test_invalid_stripe_key(self) -> None:
        with pytest.raises(ValidationError, match="Invalid Stripe secret key"):
            Settings(**{**REQUIRED, "stripe_secret_key": "pk_test_abc"})

    @pytest.mark.unit
    def test_currency_normalized(self) -> None:
        assert Settings(**REQUIRED, stripe_currency="EUR").stripe_currency == "eur"
        with pytest.raises(ValidationError):
            Settings(**REQUIRED, stripe_currency="euro")

    @pytest.mark.unit
    def test_log_level(self) -> None:
        assert Settings(**REQUIRED, log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValidationError):
            Settings(**REQUIRED, log_level="chatty")

    @pytest.mark.unit
    def test_allowed_origins_list(self) -> None:
        settings = Settings(**REQUIRED, allowed_origins="http://a.test, http://b.test")
        assert settings.get_allowed_origins_list() == ["http://a.test", "http://b.test"]
