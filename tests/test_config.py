import pytest
from pydantic import ValidationError

from serial_writer.config import AppConfig, MemoryConfig, ProjectSettings, RetryConfig


def test_default_config():
    config = AppConfig()
    assert config.provider.provider == "gemini"
    assert config.rate_limit.capacity == 2000
    assert config.retry.max_retries == 3
    assert config.retry.timeout_seconds == 180
    assert config.memory.max_volumes_in_context == 2
    assert config.memory.relevance_threshold == 0.3
    assert config.plot.chapters_per_arc == 20
    assert config.defaults.target_word_count == 2800


def test_project_settings_defaults():
    settings = ProjectSettings()
    assert settings.model == ""
    assert settings.min_score == 6
    assert settings.max_retries == 3


def test_project_settings_strips_model():
    assert ProjectSettings(model="  gemini-2.5-pro ").model == "gemini-2.5-pro"


def test_config_from_yaml(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("""
provider:
  provider: openai
  model: gpt-4o-mini
memory:
  max_volumes_in_context: 3
defaults:
  target_word_count: 2000
  min_score: 7
""")

    config = AppConfig.from_yaml(config_file)
    assert config.provider.provider == "openai"
    assert config.provider.model == "gpt-4o-mini"
    assert config.memory.max_volumes_in_context == 3
    assert config.defaults.target_word_count == 2000
    assert config.defaults.min_score == 7
    assert config.retry.max_retries == 3


def test_empty_yaml_gives_defaults(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("")
    assert AppConfig.from_yaml(config_file) == AppConfig()


def test_config_validation():
    with pytest.raises(ValidationError):
        ProjectSettings(max_retries=0)
    with pytest.raises(ValidationError):
        MemoryConfig(relevance_threshold=1.5)
    with pytest.raises(ValidationError):
        RetryConfig(timeout_seconds=0)
    with pytest.raises(ValidationError):
        AppConfig(provider={"provider": "unknown"})


def test_config_to_yaml(tmp_path):
    config = AppConfig(memory=MemoryConfig(recent_chapters=7))
    output_file = tmp_path / "output.yaml"

    config.to_yaml(output_file)

    assert output_file.exists()
    loaded = AppConfig.from_yaml(output_file)
    assert loaded.memory.recent_chapters == 7
    assert loaded.store_path == config.store_path
