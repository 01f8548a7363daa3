from __future__ import annotations

import pytest
from pydantic import ValidationError

from toolgostar.core.config import Settings


STRONG_SECRET = "k" * 48


def test_production_rejects_placeholder_secret() -> None:
    with pytest.raises(ValidationError, match="JWT_SECRET"):
        Settings(app_env="production")


def test_production_rejects_short_secret() -> None:
    with pytest.raises(ValidationError, match="JWT_SECRET"):
        Settings(app_env="prod", jwt_secret="short-secret")


def test_production_accepts_strong_secret() -> None:
    settings = Settings(app_env="production", jwt_secret=STRONG_SECRET)
    assert settings.is_production is True


def test_memory_limiter_cannot_span_instances() -> None:
    with pytest.raises(ValidationError, match="RATE_LIMIT_BACKEND"):
        Settings(rate_limit_backend="memory", api_instances=3)

    assert Settings(rate_limit_backend="redis", api_instances=3).api_instances == 3


def test_unknown_backends_are_rejected() -> None:
    with pytest.raises(ValidationError, match="RATE_LIMIT_BACKEND"):
        Settings(rate_limit_backend="memcached")
    with pytest.raises(ValidationError, match="ANALYTICS_DISPATCH"):
        Settings(analytics_dispatch="kafka")


@pytest.mark.parametrize(
    ("app_env", "disabled", "expected"),
    [
        ("test", True, True),
        ("development", True, True),
        ("staging", True, False),
        ("production", True, False),
        ("test", False, False),
    ],
)
def test_rate_limit_bypass_requires_non_production_env(app_env: str, disabled: bool, expected: bool) -> None:
    settings = Settings(app_env=app_env, rate_limit_disabled=disabled, jwt_secret=STRONG_SECRET)
    assert settings.rate_limit_bypass_active is expected


def test_settings_read_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ACCESS_TOKEN_EXPIRE_MINUTES", "15")
    monkeypatch.setenv("RATE_LIMIT_QUOTE_MAX", "4")

    settings = Settings()

    assert settings.access_token_expire_minutes == 15
    assert settings.rate_limit_quote_max == 4
