"""
Test: Configuration from the environment and fail-fast startup.
"""
import pytest

from marking_app import create_app
from marking_app.config import config_from_env, missing_keys, validate_config


ENV = {
    "DATABASE_URL": "sqlite://",
    "MARKING_APP_SECRET_KEY": "secret",
    "MAIL_SERVER": "smtp.example.test",
    "MAIL_DEFAULT_SENDER": "noreply@example.test",
}


class TestConfigFromEnv:
    def test_maps_environment(self):
        config = config_from_env(dict(ENV, MAIL_PORT="2525", MAIL_USE_TLS="false", INVITE_TTL_DAYS="3"))
        assert config["SQLALCHEMY_DATABASE_URI"] == "sqlite://"
        assert config["SECRET_KEY"] == "secret"
        assert config["MAIL_PORT"] == 2525
        assert config["MAIL_USE_TLS"] is False
        assert config["INVITE_TTL_DAYS"] == 3

    def test_defaults(self):
        config = config_from_env(ENV)
        assert config["MAIL_PORT"] == 587
        assert config["MAIL_USE_TLS"] is True
        assert config["TOKEN_TTL_MINUTES"] == 60
        assert config["CODE_TTL_MINUTES"] == 10
        assert config["INVITE_TTL_DAYS"] == 7
        assert missing_keys(config) == []

    def test_bad_integer_falls_back(self):
        assert config_from_env(dict(ENV, MAIL_PORT="smtp"))["MAIL_PORT"] == 587


class TestFailFast:
    def test_lists_every_missing_key(self):
        with pytest.raises(RuntimeError) as excinfo:
            validate_config(config_from_env({}))
        message = str(excinfo.value)
        for key in ("SQLALCHEMY_DATABASE_URI", "SECRET_KEY", "MAIL_SERVER", "MAIL_DEFAULT_SENDER"):
            assert key in message

    def test_create_app_refuses_to_start(self):
        with pytest.raises(RuntimeError):
            create_app({
                "SQLALCHEMY_DATABASE_URI": "sqlite://",
                "SECRET_KEY": None,
                "MAIL_SERVER": "smtp.example.test",
                "MAIL_DEFAULT_SENDER": "noreply@example.test",
            })
