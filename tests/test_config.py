"""Tests for configuration loading."""

from pathlib import Path

import pytest

from tier_sync.config import (
    DEFAULT_NAMING_RULES,
    Environment,
    NamingRule,
    Tier,
    default_tier_config,
    load_config_file,
    load_naming_rules,
    load_tier_config,
    parse_tier,
)
from tier_sync.errors import ConfigurationError


class TestTierRegistry:
    """Tests for built-in tier defaults."""

    def test_development_defaults(self):
        config = default_tier_config(Tier.MEMBER, Environment.DEVELOPMENT)

        assert config.database.port == 7103
        assert config.engine.endpoint == "http://localhost:8103"
        assert config.containers.service == "member-graphql-server"
        assert config.containers.volume == "member_graphql_metadata"
        assert not config.is_production
        assert config.label == "member/development"

    def test_production_defaults(self):
        config = default_tier_config(Tier.ADMIN, Environment.PRODUCTION)

        assert config.is_production
        assert config.engine.endpoint.startswith("https://")
        assert config.engine.database_url_env == "ADMIN_DATABASE_URL"

    def test_parse_tier(self):
        assert parse_tier("Operator") == Tier.OPERATOR
        with pytest.raises(ConfigurationError):
            parse_tier("guest")


class TestLoadTierConfig:
    """Tests for layered configuration."""

    def test_file_overrides(self):
        data = {
            "tiers": {
                "operator": {
                    "development": {
                        "database": {"host": "db.local", "excluded_schemas": ["audit"]},
                        "engine": {"admin_secret": "dev-secret"},
                        "containers": {"compose_dir": "/srv/operator"},
                    }
                }
            }
        }
        config = load_tier_config("operator", "development", env={}, file_data=data)

        assert config.database.host == "db.local"
        assert config.database.port == 7102
        assert config.database.excluded_schemas == ("audit",)
        assert config.engine.admin_secret == "dev-secret"
        assert config.containers.compose_dir == Path("/srv/operator")

    def test_env_overrides_file(self):
        data = {"tiers": {"admin": {"production": {"engine": {"admin_secret": "from-file"}}}}}
        env = {
            "TIER_SYNC_ADMIN_PRODUCTION_ADMIN_SECRET": "from-env",
            "TIER_SYNC_ADMIN_PRODUCTION_DB_PORT": "6543",
            "TIER_SYNC_ADMIN_DEVELOPMENT_DB_PORT": "1111",
        }
        config = load_tier_config("admin", "production", env=env, file_data=data)

        assert config.engine.admin_secret == "from-env"
        assert config.database.port == 6543

    def test_invalid_env_value(self):
        env = {"TIER_SYNC_ADMIN_DEVELOPMENT_DB_PORT": "not-a-port"}
        with pytest.raises(ConfigurationError):
            load_tier_config("admin", "development", env=env, file_data={})

    def test_unknown_key(self):
        data = {"tiers": {"admin": {"development": {"engine": {"bogus": 1}}}}}
        with pytest.raises(ConfigurationError):
            load_tier_config("admin", "development", env={}, file_data=data)

    def test_invalid_environment(self):
        with pytest.raises(ConfigurationError):
            load_tier_config("admin", "staging", env={}, file_data={})


class TestConfigFile:
    """Tests for YAML file loading."""

    def test_missing_path_is_empty(self):
        assert load_config_file(None) == {}

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config_file(tmp_path / "nope.yaml")

    def test_malformed(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("tiers: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_config_file(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            load_config_file(path)


class TestNamingRules:
    """Tests for naming rule loading."""

    def test_defaults(self):
        assert load_naming_rules(file_data={}) == list(DEFAULT_NAMING_RULES)

    def test_configured_rules_come_first(self):
        data = {"naming": {"rules": [{"target_table": "*invoices", "object_name": "invoice"}]}}
        rules = load_naming_rules(file_data=data)

        assert rules[0] == NamingRule(target_table="*invoices", object_name="invoice")
        assert len(rules) == len(DEFAULT_NAMING_RULES) + 1

    def test_replace_defaults(self):
        data = {"naming": {"replace_defaults": True, "rules": [{"array_name": "{source}_list"}]}}
        assert load_naming_rules(file_data=data) == [NamingRule(array_name="{source}_list")]

    def test_rule_needs_a_name(self):
        with pytest.raises(ConfigurationError):
            load_naming_rules(file_data={"naming": {"rules": [{"target_table": "*"}]}})
