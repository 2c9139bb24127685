import pytest
from pydantic import ValidationError

from tollgate.config import FailPolicy, Settings


def make_settings(**values) -> Settings:
    return Settings(_env_file=None, **values)


def test_defaults():
    settings = make_settings()

    assert settings.rate_limit_mode == "sliding"
    assert settings.check_timeout == 0.5
    assert settings.fail_policy == FailPolicy.CLOSED
    assert settings.log_level == "INFO"
    assert settings.redis_max_attempts == 1000


class TestCheckTimeout:

    @pytest.mark.parametrize("value", [0, 0.0, -1, -0.5])
    def test_non_positive_is_rejected(self, value):
        """A zero or negative deadline would fail every check."""
        with pytest.raises(ValidationError):
            make_settings(check_timeout=value)

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("CHECK_TIMEOUT", "0")

        with pytest.raises(ValidationError):
            make_settings()


class TestLogLevel:

    @pytest.mark.parametrize("value,expected", [
        ("debug", "DEBUG"),
        (" warning ", "WARNING"),
        ("ERROR", "ERROR"),
    ])
    def test_normalised(self, value, expected):
        assert make_settings(log_level=value).log_level == expected

    @pytest.mark.parametrize("value", ["verbose", "WARN", "", "10"])
    def test_unknown_level_is_rejected(self, value):
        with pytest.raises(ValidationError):
            make_settings(log_level=value)


@pytest.mark.parametrize("field", ["rate_limit", "window_seconds", "redis_max_attempts"])
def test_counts_must_be_positive(field):
    with pytest.raises(ValidationError):
        make_settings(**{field: 0})
