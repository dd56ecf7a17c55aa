"""Tests for shared configuration."""

import pytest
from pydantic import ValidationError

from awsx.common.config import ProviderContext, config_dir, list_profiles


class TestProviderContext:
    def test_defaults(self):
        context = ProviderContext()
        assert context.profile is None
        assert context.profile_name == "default"
        assert context.cli_args() == []

    def test_cli_args(self):
        context = ProviderContext(profile="prod", region="eu-west-1")
        assert context.cli_args() == ["--profile", "prod", "--region", "eu-west-1"]

    def test_empty_strings_are_unset(self):
        context = ProviderContext(profile="  ", region="")
        assert context.profile is None
        assert context.region is None

    def test_frozen(self):
        context = ProviderContext(profile="prod")
        with pytest.raises(ValidationError):
            context.profile = "dev"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("AWS_PROFILE", "staging")
        monkeypatch.delenv("AWS_DEFAULT_REGION", raising=False)
        monkeypatch.setenv("AWS_REGION", "ap-northeast-2")
        context = ProviderContext.from_env()
        assert context.profile == "staging"
        assert context.region == "ap-northeast-2"

    def test_explicit_values_override_env(self, monkeypatch):
        monkeypatch.setenv("AWS_PROFILE", "staging")
        assert ProviderContext.from_env(profile="prod").profile == "prod"


class TestConfigFiles:
    def test_config_dir_honours_xdg(self, monkeypatch, tmp_path):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        assert config_dir() == tmp_path / "awsx"

    def test_list_profiles(self, tmp_path):
        (tmp_path / "config").write_text(
            "[default]\nregion = us-east-1\n\n[profile prod]\nregion = eu-west-1\n"
        )
        (tmp_path / "credentials").write_text("[dev]\naws_access_key_id = x\n")
        assert list_profiles(tmp_path) == ["default", "dev", "prod"]

    def test_list_profiles_without_files(self, tmp_path):
        assert list_profiles(tmp_path) == ["default"]
