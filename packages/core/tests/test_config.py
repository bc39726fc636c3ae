"""Tests for configuration loading."""

import pytest

from difflens_core.config import DEFAULT_CONFIG, debug_enabled, load_config, load_guidelines, validate_config
from difflens_core.errors import ConfigError


def test_defaults_applied_when_no_config_file(tmp_path):
    config = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    assert config["ollama_url"] == "http://localhost:11434"
    assert config["model"] == "codellama"
    assert config["context_scope"] == "neighbors"
    assert config["guidelines"] is None
    assert config["exclude"] == []
    assert config["staged"] is False


def test_yaml_config_file_overrides_defaults(tmp_path):
    cfg = tmp_path / ".difflens.yml"
    cfg.write_text("model: llama3\nmax_context_chars: 1000\n")
    config = load_config(config_path=str(cfg))
    assert config["model"] == "llama3"
    assert config["max_context_chars"] == 1000


def test_toml_config_file_overrides_defaults(tmp_path):
    cfg = tmp_path / "config.toml"
    cfg.write_text('ollama_url = "http://gpu-box:11434"\nmodel = "deepseek-coder"\n')
    config = load_config(config_path=str(cfg))
    assert config["ollama_url"] == "http://gpu-box:11434"
    assert config["model"] == "deepseek-coder"


def test_discovers_dotfile_before_config_toml(tmp_path, monkeypatch):
    (tmp_path / ".difflens.yml").write_text("model: from-yaml\n")
    (tmp_path / "config.toml").write_text('model = "from-toml"\n')
    monkeypatch.chdir(tmp_path)
    assert load_config()["model"] == "from-yaml"


def test_discovers_config_toml_when_no_dotfile(tmp_path, monkeypatch):
    (tmp_path / "config.toml").write_text('model = "from-toml"\n')
    monkeypatch.chdir(tmp_path)
    config = load_config()
    assert config["model"] == "from-toml"
    assert config["config_path"].endswith("config.toml")


def test_unparseable_file_raises_config_error(tmp_path):
    cfg = tmp_path / "config.toml"
    cfg.write_text("model = \n")
    with pytest.raises(ConfigError):
        load_config(config_path=str(cfg))


def test_non_mapping_yaml_raises_config_error(tmp_path):
    cfg = tmp_path / ".difflens.yml"
    cfg.write_text("- just\n- a list\n")
    with pytest.raises(ConfigError):
        load_config(config_path=str(cfg))


def test_exclude_patterns_loaded(tmp_path):
    cfg = tmp_path / ".difflens.yml"
    cfg.write_text("exclude:\n  - migrations/\n  - '*.min.js'\n")
    config = load_config(config_path=str(cfg))
    assert "migrations/" in config["exclude"]
    assert "*.min.js" in config["exclude"]


def test_cli_overrides_config_file(tmp_path):
    cfg = tmp_path / ".difflens.yml"
    cfg.write_text("model: llama3\n")
    config = load_config(config_path=str(cfg), cli_overrides={"model": "codellama:13b"})
    assert config["model"] == "codellama:13b"


def test_none_cli_overrides_ignored(tmp_path):
    cfg = tmp_path / ".difflens.yml"
    cfg.write_text("model: llama3\n")
    config = load_config(config_path=str(cfg), cli_overrides={"model": None})
    assert config["model"] == "llama3"


def test_env_vars_override_file(tmp_path, monkeypatch):
    cfg = tmp_path / ".difflens.yml"
    cfg.write_text("model: llama3\nollama_url: http://a:1\n")
    monkeypatch.setenv("OLLAMA_URL", "http://b:2/")
    monkeypatch.setenv("DIFFLENS_MODEL", "mistral")
    config = load_config(config_path=str(cfg))
    assert config["ollama_url"] == "http://b:2"
    assert config["model"] == "mistral"


def test_ollama_host_without_scheme_gets_http(tmp_path, monkeypatch):
    monkeypatch.setenv("OLLAMA_HOST", "127.0.0.1:11434")
    config = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    assert config["ollama_url"] == "http://127.0.0.1:11434"


@pytest.mark.parametrize("value, expected", [("TRUE", True), ("true", True), ("1", False), ("", False)])
def test_debug_enabled_reads_env(monkeypatch, value, expected):
    monkeypatch.setenv("DEBUG", value)
    assert debug_enabled() is expected


def test_debug_is_not_a_config_key(tmp_path, monkeypatch):
    monkeypatch.setenv("DEBUG", "TRUE")
    assert "debug" not in load_config(config_path=str(tmp_path / "nonexistent.yml"))


def test_exclude_list_is_not_shared_reference(tmp_path):
    """Mutating one config's exclude list must not affect another."""
    config_a = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    config_b = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    config_a["exclude"].append("migrations/")
    assert config_b["exclude"] == []
    assert DEFAULT_CONFIG["exclude"] == []


class TestValidateConfig:
    def test_defaults_are_valid(self, config):
        assert validate_config(config) is config

    @pytest.mark.parametrize("key", ["max_context_chars", "max_retries", "max_workers"])
    def test_rejects_non_positive_limits(self, config, key):
        config[key] = 0
        with pytest.raises(ConfigError, match=key):
            validate_config(config)

    def test_rejects_unknown_scope(self, config):
        config["context_scope"] = "everything"
        with pytest.raises(ConfigError, match="context_scope"):
            validate_config(config)

    def test_rejects_negative_backoff(self, config):
        config["backoff_base"] = -1
        with pytest.raises(ConfigError):
            validate_config(config)

    def test_rejects_missing_model(self, config):
        config["model"] = ""
        with pytest.raises(ConfigError, match="model"):
            validate_config(config)


def test_custom_guidelines_path(tmp_path):
    guidelines_file = tmp_path / "my-guidelines.md"
    guidelines_file.write_text("# Custom Guidelines\n- Rule 1")
    cfg = tmp_path / ".difflens.yml"
    cfg.write_text(f"guidelines: {guidelines_file}\n")
    config = load_config(config_path=str(cfg))
    assert "Custom Guidelines" in load_guidelines(config)


def test_builtin_guidelines_loaded_as_fallback(tmp_path):
    config = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    content = load_guidelines(config)
    assert "Security" in content


def test_missing_custom_guidelines_raises(tmp_path):
    config = {"guidelines": str(tmp_path / "does-not-exist.md")}
    with pytest.raises(FileNotFoundError):
        load_guidelines(config)
