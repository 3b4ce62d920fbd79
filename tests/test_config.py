"""
Tests for configuration loading and validation functionality.
"""
import dataclasses

import pytest
from grappa import should

from zrelay.config import ConfigError, Settings, load_settings, parse_model_map
from zrelay.utils import ThinkTagsMode


def test_parse_model_map():
    mapping = parse_model_map("GLM-4.5:0727-360B-API, GLM-4.5V : glm-4.5v")
    dict(mapping) | should.equal({"GLM-4.5": "0727-360B-API", "GLM-4.5V": "glm-4.5v"})
    list(mapping) | should.equal(["GLM-4.5", "GLM-4.5V"])


def test_parse_model_map_skips_malformed_pairs():
    mapping = parse_model_map("good:one,,missing-colon,:no-key,no-value:,x:a:b")
    dict(mapping) | should.equal({"good": "one", "x": "a:b"})


def test_model_map_is_read_only():
    mapping = parse_model_map("a:b")
    with pytest.raises(TypeError):
        mapping["c"] = "d"


def test_defaults(tmp_path):
    settings = load_settings(env={}, config_path=tmp_path / "missing.yaml")

    settings.upstream_url | should.equal("https://chat.z.ai/api/chat/completions")
    settings.port | should.equal(8080)
    settings.debug | should.be.true
    settings.default_stream | should.be.true
    settings.anon_token_enabled | should.be.true
    settings.think_tags_mode | should.equal(ThinkTagsMode.STRIP)
    dict(settings.model_map) | should.equal(
        {"GLM-4.5": "0727-360B-API", "GLM-4.5V": "glm-4.5v"}
    )


def test_environment_values(tmp_path):
    env = {
        "UPSTREAM_URL": "https://example.test/api/chat",
        "DEFAULT_KEY": "sk-secret",
        "UPSTREAM_TOKEN": "tok",
        "PORT": ":9090",
        "MODEL_MAP": "Display:upstream-id",
        "DEBUG_MODE": "false",
        "DEFAULT_STREAM": "FALSE",
        "THINK_TAGS_MODE": "think",
        "ANON_TOKEN_ENABLED": "no",
    }
    settings = load_settings(env=env, config_path=tmp_path / "missing.yaml")

    settings.upstream_url | should.equal("https://example.test/api/chat")
    settings.api_key | should.equal("sk-secret")
    settings.upstream_token | should.equal("tok")
    settings.port | should.equal(9090)
    dict(settings.model_map) | should.equal({"Display": "upstream-id"})
    settings.debug | should.be.false
    settings.default_stream | should.be.false
    settings.think_tags_mode | should.equal(ThinkTagsMode.THINK)
    settings.anon_token_enabled | should.be.false


def test_yaml_file_is_overridden_by_environment(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "model_map:\n"
        "  GLM-4.5: 0727-360B-API\n"
        "  Custom: custom-id\n"
        "default_stream: false\n"
        "port: 7000\n"
    )
    settings = load_settings(env={"PORT": "7100"}, config_path=config_file)

    dict(settings.model_map) | should.equal(
        {"GLM-4.5": "0727-360B-API", "Custom": "custom-id"}
    )
    settings.default_stream | should.be.false
    settings.port | should.equal(7100)


def test_config_path_from_environment(tmp_path):
    config_file = tmp_path / "gateway.yaml"
    config_file.write_text("think_tags_mode: raw\n")
    settings = load_settings(env={"ZRELAY_CONFIG": str(config_file)})
    settings.think_tags_mode | should.equal(ThinkTagsMode.RAW)


def test_invalid_yaml_is_ignored(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("model_map: [unclosed\n")
    settings = load_settings(env={}, config_path=config_file)
    settings.port | should.equal(8080)


def test_invalid_values_raise(tmp_path):
    missing = tmp_path / "missing.yaml"
    with pytest.raises(ConfigError):
        load_settings(env={"THINK_TAGS_MODE": "hide"}, config_path=missing)
    with pytest.raises(ConfigError):
        load_settings(env={"PORT": "eighty"}, config_path=missing)
    with pytest.raises(ConfigError):
        load_settings(env={"UPSTREAM_TIMEOUT": "soon"}, config_path=missing)


def test_settings_are_immutable():
    settings = Settings()
    with pytest.raises(dataclasses.FrozenInstanceError):
        settings.api_key = "changed"
