import datetime

import pytest

from okta_broker.config import (
    FileConfig,
    Profiles,
    get_path_to_aws_config_file,
    parse_duration,
    source_profile,
)
from okta_broker.errors import ConfigError, NotFoundError


@pytest.fixture
def profiles():
    return Profiles({
        "okta": {"key_a": "a", "key_b": "b"},
        "profile_a": {"key_b": "b-a", "key_c": "c-a", "key_d": "d-a"},
        "profile_b": {"source_profile": "profile_a", "key_d": "d-b", "key_e": "e-b"},
        "profile_c": {"source_profile": "profile_b", "key_f": "f-c"},
    })


class TestGetValue:
    def test_empty_profiles(self):
        with pytest.raises(NotFoundError):
            Profiles().get_value("profile_a", "config_key")

    def test_missing_key(self, profiles):
        with pytest.raises(NotFoundError) as excinfo:
            profiles.get_value("profile_a", "config_key")
        assert "config_key" in str(excinfo.value)
        assert excinfo.value.key == "config_key"

    def test_fallback_to_okta(self, profiles):
        assert profiles.get_value("profile_a", "key_a") == ("a", "okta")

    def test_found_in_current_profile(self, profiles):
        assert profiles.get_value("profile_b", "key_d") == ("d-b", "profile_b")

    def test_found_in_source_profile(self, profiles):
        assert profiles.get_value("profile_b", "key_c") == ("c-a", "profile_a")

    def test_traversing_from_child_profile(self, profiles):
        assert profiles.get_value("profile_b", "key_a") == ("a", "okta")

    def test_source_profile_wins_over_okta(self, profiles):
        assert profiles.get_value("profile_b", "key_b") == ("b-a", "profile_a")

    def test_grandparent_is_not_consulted(self, profiles):
        # key_c only lives in profile_a, two hops away from profile_c
        with pytest.raises(NotFoundError):
            profiles.get_value("profile_c", "key_c")

    def test_missing_key_names_last_profile_consulted(self, profiles):
        with pytest.raises(NotFoundError) as excinfo:
            profiles.get_value("profile_b", "nope")
        assert excinfo.value.profile == "okta"
        assert str(excinfo.value) == "Could not find nope in okta, source profile, or okta"

    def test_missing_key_is_also_a_key_error(self, profiles):
        with pytest.raises(KeyError):
            profiles.get_value("profile_a", "nope")


def test_source_profile(profiles):
    assert source_profile("profile_b", profiles) == "profile_a"
    assert source_profile("profile_a", profiles) == "profile_a"
    assert source_profile("unknown", profiles) == "unknown"


class TestGetDuration:
    def test_unset_returns_default(self, profiles):
        default = datetime.timedelta(hours=1)
        assert profiles.get_duration("profile_a", "session_ttl", default) == default

    def test_inherited_from_okta(self):
        profiles = Profiles({"okta": {"session_ttl": "12h"}, "dev": {}})
        assert profiles.get_duration("dev", "session_ttl", None) == datetime.timedelta(hours=12)


class TestParseDuration:
    @pytest.mark.parametrize("text,expected", [
        ("12h", datetime.timedelta(hours=12)),
        ("15m", datetime.timedelta(minutes=15)),
        ("90s", datetime.timedelta(seconds=90)),
        ("1h30m", datetime.timedelta(hours=1, minutes=30)),
        ("1.5h", datetime.timedelta(minutes=90)),
    ])
    def test_valid(self, text, expected):
        assert parse_duration(text) == expected

    @pytest.mark.parametrize("text", ["", "12", "h", "12d", "1h 30m", "abc"])
    def test_invalid(self, text):
        with pytest.raises(ConfigError):
            parse_duration(text)


AWS_CONFIG = """\
[okta]
aws_saml_url = home/amazon_aws/0oa1234567/272

[default]
region = us-east-1

[profile dev]
role_arn = arn:aws:iam::123456789012:role/Developer
session_ttl = 4h

[profile admin]
source_profile = dev
role_arn = arn:aws:iam::123456789012:role/Admin
"""


class TestFileConfig:
    def test_parse_sections(self):
        profiles = FileConfig(text=AWS_CONFIG).parse()
        assert set(profiles) == {"okta", "default", "dev", "admin"}
        assert profiles["default"] == {"region": "us-east-1"}
        assert profiles["dev"]["role_arn"] == "arn:aws:iam::123456789012:role/Developer"
        assert profiles["admin"]["source_profile"] == "dev"
        assert profiles["okta"]["aws_saml_url"] == "home/amazon_aws/0oa1234567/272"

    def test_okta_profile_always_exists(self):
        profiles = FileConfig(text="[profile dev]\nregion = eu-west-1\n").parse()
        assert profiles["okta"] == {}

    def test_values_are_not_interpolated(self):
        profiles = FileConfig(text="[profile dev]\nnote = 100%\n").parse()
        assert profiles["dev"]["note"] == "100%"

    def test_parse_file(self, tmp_path):
        path = tmp_path / "config"
        path.write_text(AWS_CONFIG)
        profiles = FileConfig(path=str(path)).parse()
        assert profiles.get_value("admin", "aws_saml_url") == (
            "home/amazon_aws/0oa1234567/272", "okta"
        )

    def test_malformed_file(self, tmp_path):
        path = tmp_path / "config"
        path.write_text("this is not an ini file\n[unterminated\n")
        with pytest.raises(ConfigError):
            FileConfig(path=str(path)).parse()

    def test_unreadable_file(self, tmp_path):
        with pytest.raises(ConfigError):
            FileConfig(path=str(tmp_path / "missing")).parse()

    def test_missing_file_from_env_is_empty(self, tmp_path, monkeypatch):
        monkeypatch.setenv("AWS_CONFIG_FILE", str(tmp_path / "missing"))
        assert FileConfig.from_env().parse() == {}

    def test_from_env(self, tmp_path, monkeypatch):
        path = tmp_path / "config"
        path.write_text(AWS_CONFIG)
        monkeypatch.setenv("AWS_CONFIG_FILE", str(path))
        assert "dev" in FileConfig.from_env().parse()


def test_config_path_defaults_to_home(monkeypatch, tmp_path):
    monkeypatch.delenv("AWS_CONFIG_FILE", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    assert get_path_to_aws_config_file() == str(tmp_path / ".aws" / "config")
