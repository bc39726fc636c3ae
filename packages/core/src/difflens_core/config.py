import os
import tomllib
from pathlib import Path
from typing import Optional

import yaml

from difflens_core.errors import ConfigError

DEFAULT_CONFIG: dict = {
    "ollama_url": "http://localhost:11434",
    "model": "codellama",
    "staged": False,
    "context_scope": "neighbors",  # "changed" | "neighbors" | "tree"
    "max_context_chars": 60000,
    "max_chars_per_file": 20000,
    "max_context_files": 25,
    "max_workers": 8,
    "max_retries": 3,
    "backoff_base": 1.0,
    "backoff_max": 8.0,
    "request_timeout": 120.0,
    "run_timeout": 600.0,
    "temperature": None,
    "guidelines": None,  # None = use built-in default; set to a path string to override
    "exclude": [],  # extra gitignore-style patterns applied at the repository root
}

CONTEXT_SCOPES = ("changed", "neighbors", "tree")

# Looked up in order when no explicit config path is given.
CONFIG_FILENAMES = (".difflens.yml", ".difflens.yaml", "config.toml")

BUILTIN_GUIDELINES_DIR = Path(__file__).parent / "guidelines"
_BUILTIN_DEFAULT = BUILTIN_GUIDELINES_DIR / "default.md"

_POSITIVE_INT_KEYS = ("max_context_chars", "max_chars_per_file", "max_context_files", "max_workers", "max_retries")
_POSITIVE_FLOAT_KEYS = ("request_timeout", "run_timeout")
_NON_NEGATIVE_FLOAT_KEYS = ("backoff_base", "backoff_max")


def find_config_file(directory: str | Path = ".") -> Optional[Path]:
    for name in CONFIG_FILENAMES:
        candidate = Path(directory) / name
        if candidate.is_file():
            return candidate
    return None


def read_config_file(path: Path) -> dict:
    """Parse a YAML or TOML config file into a dict, chosen by suffix."""
    try:
        if path.suffix == ".toml":
            with open(path, "rb") as f:
                data = tomllib.load(f)
        else:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
    except (tomllib.TOMLDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not parse {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level, got {type(data).__name__}")
    return data


def load_config(config_path: Optional[str] = None, cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. The config file (explicit path, else .difflens.yml, else config.toml)
      3. Environment variables (OLLAMA_URL / OLLAMA_HOST, DIFFLENS_MODEL)
      4. CLI argument overrides
    """
    config = {**DEFAULT_CONFIG, "exclude": list(DEFAULT_CONFIG["exclude"])}

    path = Path(config_path) if config_path else find_config_file()
    if path is not None and path.exists():
        config.update(read_config_file(path))
        config["config_path"] = str(path)

    ollama_url = os.environ.get("OLLAMA_URL") or os.environ.get("OLLAMA_HOST")
    if ollama_url:
        if "://" not in ollama_url:
            ollama_url = f"http://{ollama_url}"
        config["ollama_url"] = ollama_url
    if os.environ.get("DIFFLENS_MODEL"):
        config["model"] = os.environ["DIFFLENS_MODEL"]

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    config["ollama_url"] = str(config["ollama_url"]).rstrip("/")
    return config


def debug_enabled() -> bool:
    """True when DEBUG=TRUE is set in the environment (case-insensitive)."""
    return os.environ.get("DEBUG", "").upper() == "TRUE"


def validate_config(config: dict) -> dict:
    """Reject values the pipeline cannot run with. Returns the same dict."""
    if not config.get("model"):
        raise ConfigError("No model configured. Set `model` in the config file or pass --model.")
    if not config.get("ollama_url"):
        raise ConfigError("No inference endpoint configured. Set `ollama_url` or pass --ollama-url.")

    for key in _POSITIVE_INT_KEYS:
        value = config.get(key)
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            raise ConfigError(f"{key} must be a positive integer, got {value!r}")
    for key in _POSITIVE_FLOAT_KEYS:
        value = config.get(key)
        if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
            raise ConfigError(f"{key} must be a positive number, got {value!r}")
    for key in _NON_NEGATIVE_FLOAT_KEYS:
        value = config.get(key)
        if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0:
            raise ConfigError(f"{key} must be zero or a positive number, got {value!r}")

    if config.get("context_scope") not in CONTEXT_SCOPES:
        raise ConfigError(f"context_scope must be one of {', '.join(CONTEXT_SCOPES)}, got {config.get('context_scope')!r}")
    if not isinstance(config.get("exclude", []), list):
        raise ConfigError("exclude must be a list of patterns")
    return config


def load_guidelines(config: dict) -> str:
    """
    Load review guidelines.

    If ``guidelines`` is set in config, loads from that path (relative to cwd).
    Otherwise falls back to the built-in default.
    """
    custom_path = config.get("guidelines")
    if custom_path:
        p = Path(custom_path)
        if not p.exists():
            raise FileNotFoundError(f"Guidelines file not found: {custom_path}")
        return p.read_text()

    if _BUILTIN_DEFAULT.exists():
        return _BUILTIN_DEFAULT.read_text()

    raise FileNotFoundError("No guidelines configured and built-in default is missing.")
