"""Tests for Settings."""

import pytest
from pydantic import ValidationError

from autonomy.config import Settings
from tests.conftest import make_settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("AUTONOMY_TRIGGER_INTERVAL", raising=False)
        s = Settings(_env_file=None)
        assert s.trigger_interval == 10.0
        assert s.planning_interval == 60.0
        assert s.decomposer == "template"
        assert s.persistence_enabled is False
        assert s.plan_stale_seconds is None

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("AUTONOMY_TRIGGER_INTERVAL", "2.5")
        monkeypatch.setenv("AUTONOMY_AGENT_ID", "from-env")
        s = Settings(_env_file=None)
        assert s.trigger_interval == 2.5
        assert s.agent_id == "from-env"

    def test_unprefixed_credentials(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-api-env")
        s = Settings(_env_file=None, decomposer="llm")
        assert s.anthropic_api_key == "sk-ant-api-env"

    def test_llm_requires_credentials(self):
        with pytest.raises(ValidationError, match="ANTHROPIC_API_KEY"):
            Settings(_env_file=None, decomposer="llm")

    @pytest.mark.parametrize("field", ["trigger_interval", "planning_interval"])
    def test_intervals_must_be_positive(self, field):
        with pytest.raises(ValidationError):
            make_settings(**{field: 0})

    def test_unknown_decomposer_rejected(self):
        with pytest.raises(ValidationError):
            make_settings(decomposer="oracle")
