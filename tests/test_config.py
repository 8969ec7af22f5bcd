"""Tests for configuration loading and validation."""

from dataclasses import replace

import pytest

from contributor_sync.config import Config, get_config, read_token_file, set_config
from contributor_sync.exceptions import ConfigurationError
from contributor_sync.models.platform import Platform

ENV_VARS = [
    "CONTRIBUTOR_SYNC_TOKENS",
    "GITHUB_TOKENS",
    "GITHUB_TOKEN",
    "CONTRIBUTOR_SYNC_TOKEN_FILE",
    "CONTRIBUTOR_SYNC_PLATFORM",
    "CONTRIBUTOR_SYNC_MAX_CONCURRENT",
    "CONTRIBUTOR_SYNC_MAX_IN_FLIGHT",
    "CONTRIBUTOR_SYNC_BATCH_BUDGET",
    "DATABASE_URL",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Environment without any Contributor Sync variables."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestFromEnv:
    """Tests for Config.from_env()."""

    def test_defaults(self, clean_env):
        config = Config.from_env()

        assert config.tokens == []
        assert config.database_url == "sqlite:///contributors.db"
        assert config.platform is Platform.GITHUB
        assert config.max_concurrent == 8
        assert config.batch_budget_seconds is None

    def test_tokens_comma_and_whitespace_separated(self, clean_env):
        clean_env.setenv("CONTRIBUTOR_SYNC_TOKENS", "tok_a, tok_b\ntok_c,,tok_a")
        assert Config.from_env().tokens == ["tok_a", "tok_b", "tok_c"]

    def test_single_github_token(self, clean_env):
        clean_env.setenv("GITHUB_TOKEN", "tok_single")
        assert Config.from_env().tokens == ["tok_single"]

    def test_token_file_appended(self, clean_env, tmp_path):
        token_file = tmp_path / "tokens.txt"
        token_file.write_text("# pool\ntok_file_1\n\n  tok_file_2  \n", encoding="utf-8")
        clean_env.setenv("CONTRIBUTOR_SYNC_TOKENS", "tok_env")
        clean_env.setenv("CONTRIBUTOR_SYNC_TOKEN_FILE", str(token_file))

        assert Config.from_env().tokens == ["tok_env", "tok_file_1", "tok_file_2"]

    def test_overrides(self, clean_env):
        clean_env.setenv("CONTRIBUTOR_SYNC_PLATFORM", "Gitee")
        clean_env.setenv("CONTRIBUTOR_SYNC_MAX_CONCURRENT", "16")
        clean_env.setenv("CONTRIBUTOR_SYNC_MAX_IN_FLIGHT", "4")
        clean_env.setenv("CONTRIBUTOR_SYNC_BATCH_BUDGET", "600")
        clean_env.setenv("DATABASE_URL", "postgresql://localhost/contributors")

        config = Config.from_env()

        assert config.platform is Platform.GITEE
        assert config.max_concurrent == 16
        assert config.effective_max_in_flight == 4
        assert config.batch_budget_seconds == 600.0
        assert config.database_url == "postgresql://localhost/contributors"

    def test_invalid_number(self, clean_env):
        clean_env.setenv("CONTRIBUTOR_SYNC_MAX_CONCURRENT", "lots")
        with pytest.raises(ConfigurationError):
            Config.from_env()

    def test_unknown_platform(self, clean_env):
        clean_env.setenv("CONTRIBUTOR_SYNC_PLATFORM", "bitbucket")
        with pytest.raises(ConfigurationError):
            Config.from_env()


class TestValidate:
    """Tests for Config.validate()."""

    def test_valid(self):
        Config(tokens=["tok"]).validate()

    def test_missing_tokens(self):
        with pytest.raises(ConfigurationError, match="No API credentials"):
            Config().validate()

    def test_store_only_commands_skip_token_check(self):
        Config().validate(require_credentials=False)

    def test_missing_database(self):
        with pytest.raises(ConfigurationError, match="DATABASE_URL"):
            Config(tokens=["tok"], database_url="").validate()

    @pytest.mark.parametrize(
        "field, value",
        [
            ("max_concurrent", 0),
            ("max_concurrent_repos", 0),
            ("page_size", 0),
            ("max_in_flight", 0),
            ("max_retries", -1),
        ],
    )
    def test_bad_limits(self, field, value):
        config = replace(Config(tokens=["tok"]), **{field: value})
        with pytest.raises(ConfigurationError):
            config.validate()


class TestHelpers:
    def test_api_url_for(self):
        config = Config()
        assert config.api_url_for(Platform.GITHUB) == "https://api.github.com"
        assert config.api_url_for(Platform.GITEE) == "https://gitee.com/api/v5"

    def test_effective_max_in_flight_defaults_to_workers(self):
        assert Config(max_concurrent=6).effective_max_in_flight == 6

    def test_read_token_file_missing(self, tmp_path):
        with pytest.raises(ConfigurationError):
            read_token_file(tmp_path / "absent.txt")

    def test_global_config(self, clean_env):
        config = Config(tokens=["tok"])
        set_config(config)
        assert get_config() is config
