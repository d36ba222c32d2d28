"""
Unit tests for settings and the retry policy.
"""

import logging

import pytest
from pydantic import ValidationError

from couchbind_sdk import DatabaseNaming, RetryPolicy, Settings


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self):
        settings = Settings()

        assert settings.base_url == "http://localhost:5984"
        assert settings.database_naming == DatabaseNaming.PER_ENTITY
        assert settings.changes_heartbeat_ms == 10000

    def test_environment_variables(self, monkeypatch):
        """COUCHBIND_* variables override the defaults."""
        monkeypatch.setenv("COUCHBIND_HOST", "couch.internal")
        monkeypatch.setenv("COUCHBIND_PORT", "6984")
        monkeypatch.setenv("COUCHBIND_SCHEME", "https")
        monkeypatch.setenv("COUCHBIND_ADMIN_PASSWORD", "hunter2")

        settings = Settings()

        assert settings.base_url == "https://couch.internal:6984"
        assert settings.admin_password.get_secret_value() == "hunter2"

    def test_predefined_naming_requires_database_name(self):
        with pytest.raises(ValidationError, match="database_name is required"):
            Settings(database_naming=DatabaseNaming.PREDEFINED)

    def test_retry_policy_from_settings(self):
        settings = Settings(changes_max_retries=2, changes_initial_backoff=1.5)

        policy = settings.retry_policy()

        assert policy.max_retries == 2
        assert policy.initial_backoff == 1.5

    def test_log_config_redacts_password(self, caplog):
        settings = Settings(admin_password="hunter2")

        with caplog.at_level(logging.INFO, logger="couchbind_sdk.config"):
            settings.log_config()

        assert "hunter2" not in caplog.text
        assert all("hunter2" not in str(record.__dict__) for record in caplog.records)


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_exponential_delay_with_cap(self):
        policy = RetryPolicy(initial_backoff=0.5, multiplier=2.0, max_backoff=3.0)

        assert policy.delay(0) == 0.0
        assert policy.delay(1) == 0.5
        assert policy.delay(2) == 1.0
        assert policy.delay(3) == 2.0
        assert policy.delay(4) == 3.0
        assert policy.delay(10) == 3.0

    def test_allows(self):
        policy = RetryPolicy(max_retries=2)

        assert policy.allows(1)
        assert policy.allows(2)
        assert not policy.allows(3)
        assert not RetryPolicy(max_retries=0).allows(1)
