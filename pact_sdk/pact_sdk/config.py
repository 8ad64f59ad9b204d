"""
Configuration loader for pact_sdk.

Options come from several sources, lowest priority first:

1. Built-in defaults
2. Environment variables (PACT_*)
3. A pact.yaml / pact.yml / pact.json config file
4. Explicit overrides passed by the caller

All merging goes through merge_options().

Environment Variables:
    PACT_MODE: Pact mode (disabled, record, recording, apply, mock)
    PACT_RECORDING_MODE: Recording mode (append, new, replace, refresh)
    PACT_STRICT_MATCHING: Compare every expected field, true/false
    PACT_STRICT_MOCKING: Return 404 for unknown requests while mocking
    PACT_PREPROCESSOR_OBFUSCATE: Comma separated or JSON list of key paths
    PACT_PREPROCESSOR_IGNORE: Comma separated or JSON list of key paths
    PACT_PREPROCESSOR_PATTERN: Obfuscation pattern
    PACT_BASE_URL: Base url of the system under test
    PACT_CONFIG: Path of the config file
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

import yaml

from pact_sdk.errors import PactConfigError
from pact_sdk.modes import PactMode, RecordingMode

logger = logging.getLogger(__name__)

CONFIG_FILE_NAMES = ("pact.yaml", "pact.yml", "pact.json")

DEFAULTS: Dict[str, Any] = {
    "mode": PactMode.DISABLED.value,
    "recording_mode": RecordingMode.APPEND.value,
    "strict_matching": True,
    "strict_mocking": True,
    "match_schema_and_object": False,
    "fail_on_missing_pacts": True,
    "fail_on_pact_validation": True,
    "ignore_not_found": False,
    "folder": "./pacts",
    "port": 3000,
    "resource_path": "/c8yctrl",
    "timeout": 60.0,
    "log_level": "info",
}

PREPROCESSOR_KEYS = ("ignore", "obfuscate", "obfuscation_pattern", "ignore_case")


def merge_options(*sources: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Merge option sources into a single dict.

    Later sources override earlier ones key by key. Keys that are missing
    or None in a later source fall through to the earlier value.

    Examples:
        >>> merge_options({"a": 1, "b": 2}, {"b": None, "c": 3})
        {'a': 1, 'b': 2, 'c': 3}
    """
    merged: Dict[str, Any] = {}
    for source in sources:
        if not source:
            continue
        for key, value in source.items():
            if value is None:
                continue
            merged[key] = value
    return merged


def parse_bool(value: Any, name: str = "boolean") -> bool:
    """Parse true/false/1/0/yes/no (case-insensitive)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in ("true", "1", "yes", "on"):
        return True
    if text in ("false", "0", "no", "off"):
        return False
    raise PactConfigError(name, value, ["true", "false"])


def parse_list(value: Any) -> List[str]:
    """Parse a JSON array or comma separated string into a list of strings."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    text = str(value).strip()
    if text.startswith("["):
        try:
            parsed = json.loads(text)
            if isinstance(parsed, list):
                return [str(v) for v in parsed]
        except ValueError:
            pass
    return [part.strip() for part in text.split(",") if part.strip()]


# option name -> (environment variable, parser)
ENV_VARS: Dict[str, tuple] = {
    "mode": ("PACT_MODE", str),
    "recording_mode": ("PACT_RECORDING_MODE", str),
    "strict_matching": ("PACT_STRICT_MATCHING", parse_bool),
    "strict_mocking": ("PACT_STRICT_MOCKING", parse_bool),
    "match_schema_and_object": ("PACT_MATCH_SCHEMA_AND_OBJECT", parse_bool),
    "fail_on_missing_pacts": ("PACT_FAIL_ON_MISSING_PACTS", parse_bool),
    "fail_on_pact_validation": ("PACT_FAIL_ON_PACT_VALIDATION", parse_bool),
    "ignore_not_found": ("PACT_IGNORE_NOT_FOUND", parse_bool),
    "obfuscate": ("PACT_PREPROCESSOR_OBFUSCATE", parse_list),
    "ignore": ("PACT_PREPROCESSOR_IGNORE", parse_list),
    "obfuscation_pattern": ("PACT_PREPROCESSOR_PATTERN", str),
    "ignore_case": ("PACT_PREPROCESSOR_IGNORE_CASE", parse_bool),
    "base_url": ("PACT_BASE_URL", str),
    "tenant": ("PACT_TENANT", str),
    "folder": ("PACT_FOLDER", str),
    "port": ("PACT_PORT", int),
    "resource_path": ("PACT_RESOURCE_PATH", str),
    "timeout": ("PACT_TIMEOUT", float),
    "log_level": ("PACT_LOG_LEVEL", str),
}


def options_from_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Read options from environment variables.

    Raises:
        PactConfigError: If a variable holds a value its parser rejects
    """
    environ = os.environ if environ is None else environ
    options: Dict[str, Any] = {}
    for name, (variable, parser) in ENV_VARS.items():
        raw = environ.get(variable)
        if raw is None or raw == "":
            continue
        options[name] = _parse(parser, raw, variable)
    return options


def preprocessor_options_from_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Subset of options_from_env() used by the preprocessor."""
    options = options_from_env(environ)
    return {k: options[k] for k in PREPROCESSOR_KEYS if k in options}


def _parse(parser: Callable, raw: Any, name: str) -> Any:
    if parser is parse_bool:
        return parse_bool(raw, name)
    try:
        return parser(raw)
    except (TypeError, ValueError):
        raise PactConfigError(name, raw)


class PactConfig:
    """Merged configuration of a pact session or controller."""

    def __init__(self, options: Optional[Dict[str, Any]] = None):
        self._options = merge_options(DEFAULTS, options)

    @property
    def mode(self) -> PactMode:
        """Pact mode. Raises PactConfigError if unsupported."""
        return PactMode.parse(self._options.get("mode"))

    @property
    def recording_mode(self) -> RecordingMode:
        """Recording mode. Raises PactConfigError if unsupported."""
        return RecordingMode.parse(self._options.get("recording_mode"))

    @property
    def strict_matching(self) -> bool:
        return parse_bool(self._options.get("strict_matching"), "strict_matching")

    @property
    def strict_mocking(self) -> bool:
        return parse_bool(self._options.get("strict_mocking"), "strict_mocking")

    @property
    def base_url(self) -> Optional[str]:
        return self._options.get("base_url")

    @property
    def tenant(self) -> Optional[str]:
        return self._options.get("tenant")

    @property
    def folder(self) -> str:
        return str(self._options.get("folder"))

    @property
    def port(self) -> int:
        return int(self._options.get("port"))

    @property
    def timeout(self) -> float:
        return float(self._options.get("timeout"))

    def preprocessor_options(self) -> Dict[str, Any]:
        """Preprocessor options set in this config."""
        return {k: self._options[k] for k in PREPROCESSOR_KEYS if k in self._options}

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by key"""
        return self._options.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._options)


def find_config_file(start: Optional[Path] = None) -> Optional[Path]:
    """
    Find a config file.

    Search order:
    1. PACT_CONFIG environment variable
    2. pact.yaml, pact.yml or pact.json in the start directory
    3. The same names in parent directories (walk up the tree)
    """
    env_path = os.environ.get("PACT_CONFIG")
    if env_path:
        return Path(env_path)

    current = (start or Path.cwd()).resolve()
    while True:
        for name in CONFIG_FILE_NAMES:
            candidate = current / name
            if candidate.exists():
                return candidate

        # Stop at filesystem root
        if current == current.parent:
            return None
        current = current.parent


def load_config_file(path: Path) -> Dict[str, Any]:
    """
    Load a YAML or JSON config file.

    Raises:
        PactConfigError: If the file does not hold a mapping
    """
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise PactConfigError("config file", str(path))
    logger.debug(f"Loaded config from {path}")
    return {str(k).replace("-", "_"): v for k, v in data.items()}


def load_config(
    config_path: Optional[str] = None,
    defaults: Optional[Dict[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> PactConfig:
    """
    Load configuration from all sources.

    Args:
        config_path: Optional explicit path to config file
        defaults: Caller specific defaults, applied above the built-in ones
        environ: Environment to read, defaults to os.environ
        **overrides: Explicit option values, highest priority

    Returns:
        PactConfig instance
    """
    if config_path:
        path: Optional[Path] = Path(config_path)
    elif environ is None:
        path = find_config_file()
    else:
        path = None

    file_options = load_config_file(path) if path is not None else {}
    return PactConfig(merge_options(
        defaults,
        options_from_env(environ),
        file_options,
        overrides,
    ))
