"""Tests for settings, engine configuration and the industry rule loader."""

import pytest
from pydantic import ValidationError

from scalemap.config import Settings
from scalemap.core import ConfigurationError
from scalemap.infrastructure.llm import MockLLMClient, create_llm_client
from scalemap.triage.domain import IndustryRule, IndustryRuleTable, TriageConfiguration
from scalemap.triage.infrastructure import IndustryRuleLoader


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("ENVIRONMENT", raising=False)
        settings = Settings(_env_file=None)
        assert settings.triage_min_completeness == 0.4
        assert settings.triage_max_cost == 0.5
        assert settings.triage_primary_model == "gpt-4o-mini"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("TRIAGE_MAX_COST", "0.2")
        monkeypatch.setenv("TRIAGE_FALLBACK_MODEL", "gpt-4.1")
        settings = Settings(_env_file=None)
        assert settings.triage_max_cost == 0.2
        assert settings.triage_fallback_model == "gpt-4.1"

    def test_invalid_environment(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, environment="moon")

    def test_engine_configuration_from_settings(self):
        settings = Settings(
            _env_file=None,
            triage_min_completeness=0.5,
            triage_max_tokens=6000,
            triage_algorithm_version="2.0.0"
        )
        config = TriageConfiguration.from_settings(settings)

        assert config.min_completeness == 0.5
        assert config.max_tokens_per_request == 6000
        assert config.algorithm_version == "2.0.0"
        assert config.min_critical_domains == 3

    def test_mock_llm_selected(self):
        client = create_llm_client(Settings(_env_file=None, mock_llm=True))
        assert isinstance(client, MockLLMClient)

    def test_missing_api_key_is_fatal(self):
        with pytest.raises(ConfigurationError):
            create_llm_client(Settings(_env_file=None, mock_llm=False, openai_api_key=None))


class TestTriageConfiguration:
    """Tests for engine configuration validation."""

    def test_domain_bounds(self):
        with pytest.raises(ValidationError):
            TriageConfiguration(min_critical_domains=6, max_critical_domains=5)

    def test_unknown_model_uses_default_pricing(self):
        config = TriageConfiguration()
        assert config.pricing_for("some-new-model") == config.default_pricing

    def test_configuration_is_frozen(self):
        config = TriageConfiguration()
        with pytest.raises(ValidationError):
            config.min_completeness = 0.9


class TestIndustryRuleLoader:
    """Tests for YAML industry rules."""

    def test_missing_file_uses_built_in_table(self, tmp_path):
        table = IndustryRuleLoader().load(tmp_path / "absent.yaml")
        assert table == IndustryRuleTable.default()
        assert set(table.sectors) == {
            "financial-services", "healthcare", "technology",
            "manufacturing", "retail", "professional-services"
        }

    def test_load_rules(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(
            "sectors:\n"
            "  energy:\n"
            "    regulatory_classification: highly-regulated\n"
            "    required_domains: [risk-compliance]\n"
            "    excluded_domains: [partnerships]\n"
            "    weighting_multipliers:\n"
            "      risk-compliance: 1.4\n"
            "      supply-chain: 1.2\n"
        )
        table = IndustryRuleLoader().load(path)

        rule = table.get("energy")
        assert rule.regulatory_classification == "heavily-regulated"
        assert rule.weighting_multipliers["risk-compliance"] == 1.4
        assert rule.excluded_domains == ["partnerships"]
        assert table.get("retail") is None

    def test_invalid_multiplier(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text("sectors:\n  energy:\n    weighting_multipliers:\n      risk-compliance: 7\n")
        with pytest.raises(ConfigurationError):
            IndustryRuleLoader().load(path)

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text("sectors: [unclosed\n")
        with pytest.raises(ConfigurationError):
            IndustryRuleLoader().load(path)

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError):
            IndustryRuleLoader().load(path)

    def test_rule_validation(self):
        with pytest.raises(ValidationError):
            IndustryRule(regulatory_classification="unregulated")
