"""Unit tests for the pulse configuration module (pydantic-settings)."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from pulse.config import LIMITED_SYNC_COUNT, PulseConfig, get_config, reset_config

_ENV_VARS = [
    "LINEAR_API_KEY",
    "LINEAR_API_URL",
    "DATABASE_PATH",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "IGNORED_TEAM_KEYS",
    "WHITELIST_TEAM_KEYS",
    "IGNORED_ASSIGNEE_NAMES",
    "ENGINEER_TEAM_MAPPING",
    "TEAM_DOMAIN_MAPPINGS",
    "LIMIT_SYNC",
    "PROJECT_SYNC_CONCURRENCY",
    "GETDX_THROUGHPUT_PER_IC_TARGET",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """No pulse variables in the environment and no .env in the working dir."""
    for key in _ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


class TestPulseConfig:
    """Test PulseConfig with pydantic-settings BaseSettings."""

    def test_default_config_values(self, clean_env):
        config = get_config()

        assert config.linear_api_key.get_secret_value() == ""
        assert config.linear_api_url == "https://api.linear.app/graphql"
        assert config.database_path == Path.home() / ".linear-pulse" / "pulse.db"
        assert config.log_level == "INFO"
        assert config.log_format == "json"
        assert config.ignored_team_keys == []
        assert config.whitelist_team_keys == []
        assert config.ignored_assignee_names == []
        assert config.engineer_team_mapping == {}
        assert config.team_domain_mappings == {}
        assert config.limit_sync is False
        assert config.project_sync_concurrency == 5
        assert config.getdx_throughput_per_ic_target == 6.0

    def test_environment_variable_override(self, clean_env):
        clean_env.setenv("LINEAR_API_KEY", "lin_api_abc")
        clean_env.setenv("LOG_LEVEL", "DEBUG")
        clean_env.setenv("LIMIT_SYNC", "true")
        clean_env.setenv("PROJECT_SYNC_CONCURRENCY", "3")

        config = get_config()

        assert config.linear_api_key.get_secret_value() == "lin_api_abc"
        assert config.log_level == "DEBUG"
        assert config.limit_sync is True
        assert config.project_sync_concurrency == 3

    def test_api_key_not_shown_in_repr(self, clean_env):
        clean_env.setenv("LINEAR_API_KEY", "lin_api_secret")
        config = get_config()
        assert "lin_api_secret" not in repr(config)

    def test_config_is_frozen(self, clean_env):
        config = get_config()
        with pytest.raises(ValidationError):
            config.log_level = "DEBUG"

    def test_get_config_is_cached(self, clean_env):
        assert get_config() is get_config()

    def test_reset_config_reloads(self, clean_env):
        first = get_config()
        clean_env.setenv("LOG_FORMAT", "text")
        reset_config()
        second = get_config()
        assert first is not second
        assert second.log_format == "text"


class TestListParsing:
    """Comma-separated list variables."""

    def test_csv_team_keys(self, clean_env):
        clean_env.setenv("IGNORED_TEAM_KEYS", "SUPPORT, OPS ,,")
        config = get_config()
        assert config.ignored_team_keys == ["SUPPORT", "OPS"]

    def test_json_list_accepted(self, clean_env):
        clean_env.setenv("WHITELIST_TEAM_KEYS", '["ENG", "WEB"]')
        config = get_config()
        assert config.whitelist_team_keys == ["ENG", "WEB"]

    def test_assignee_names_keep_case(self, clean_env):
        clean_env.setenv("IGNORED_ASSIGNEE_NAMES", "Build Bot,Dependabot")
        config = get_config()
        assert config.ignored_assignee_names == ["Build Bot", "Dependabot"]

    def test_python_list_accepted(self, make_config):
        config = make_config(ignored_team_keys=["A", "B"])
        assert config.ignored_team_keys == ["A", "B"]


class TestEngineerTeamMapping:
    def test_pairs_parsed_with_lowercased_names(self, clean_env):
        clean_env.setenv("ENGINEER_TEAM_MAPPING", "Alice Smith:ENG, bob:OPS")
        config = get_config()
        assert config.engineer_team_mapping == {"alice smith": "ENG", "bob": "OPS"}

    def test_dict_input_lowercased(self, make_config):
        config = make_config(engineer_team_mapping={"Alice": "ENG"})
        assert config.engineer_team_mapping == {"alice": "ENG"}

    def test_malformed_pair_rejected(self, make_config):
        with pytest.raises(ValidationError):
            make_config(engineer_team_mapping="alice")


class TestTeamDomainMappings:
    def test_json_object_parsed(self, clean_env):
        clean_env.setenv("TEAM_DOMAIN_MAPPINGS", '{"ENG": "Platform", "WEB": "Platform"}')
        config = get_config()
        assert config.team_domain_mappings == {"ENG": "Platform", "WEB": "Platform"}

    def test_invalid_json_degrades_to_empty(self, clean_env, caplog):
        clean_env.setenv("TEAM_DOMAIN_MAPPINGS", "{not json")
        config = get_config()
        assert config.team_domain_mappings == {}
        assert "team_domain_mappings_invalid" in caplog.text

    def test_non_object_degrades_to_empty(self, clean_env):
        clean_env.setenv("TEAM_DOMAIN_MAPPINGS", '["ENG"]')
        config = get_config()
        assert config.team_domain_mappings == {}


class TestValidation:
    def test_invalid_log_level_rejected(self, make_config):
        with pytest.raises(ValidationError):
            make_config(log_level="VERBOSE")

    def test_invalid_log_format_rejected(self, make_config):
        with pytest.raises(ValidationError):
            make_config(log_format="xml")

    @pytest.mark.parametrize("value", [0, 21])
    def test_concurrency_bounds(self, make_config, value):
        with pytest.raises(ValidationError):
            make_config(project_sync_concurrency=value)

    def test_throughput_target_must_be_positive(self, make_config):
        with pytest.raises(ValidationError):
            make_config(getdx_throughput_per_ic_target=0)

    def test_database_path_expands_user(self, make_config):
        config = make_config(database_path="~/pulse-test.db")
        assert config.database_path == Path.home() / "pulse-test.db"

    def test_both_team_filters_warn(self, make_config, caplog):
        config = make_config(whitelist_team_keys=["ENG"], ignored_team_keys=["OPS"])
        assert config.whitelist_team_keys == ["ENG"]
        assert "team_filters_overlap" in caplog.text


class TestProjectSyncLimit:
    def test_unlimited_by_default(self, config):
        assert config.project_sync_limit is None

    def test_limited_when_limit_sync(self, make_config):
        assert make_config(limit_sync=True).project_sync_limit == LIMITED_SYNC_COUNT


def test_direct_construction_ignores_env_file(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("LOG_LEVEL=ERROR\n")
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("LOG_LEVEL", raising=False)

    assert PulseConfig().log_level == "ERROR"
    assert PulseConfig(_env_file=None).log_level == "INFO"
