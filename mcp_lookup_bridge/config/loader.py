"""Configuration file loading and validation.

Loads a YAML configuration file, expands ``${ENV_VAR}`` placeholders,
and validates against the Pydantic models defined in :mod:`schema`.

The public API is :func:`load_bridge_config`, which returns a
:class:`BridgeConfig`. A missing file is not an error: the bridge runs
on defaults.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from mcp_lookup_bridge.config.env import expand_env_vars
from mcp_lookup_bridge.config.schema import BridgeConfig
from mcp_lookup_bridge.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Recognised config file extensions.
_YAML_EXTS = frozenset({".yaml", ".yml"})

# Config file search order (first match wins)
CONFIG_SEARCH_ORDER = ("config.yaml", "config.yml")
CONFIG_ENV_VAR = "MCP_LOOKUP_BRIDGE_CONFIG"
API_KEY_ENV_VAR = "MCPLOOKUP_API_KEY"


def find_config_file(search_dirs: Optional[List[str]] = None) -> Optional[str]:
    """Locate the config file: ``$MCP_LOOKUP_BRIDGE_CONFIG``, then the CWD.

    Returns ``None`` when nothing is found.
    """
    from_env = os.environ.get(CONFIG_ENV_VAR)
    if from_env:
        return from_env
    for base_dir in search_dirs or [os.getcwd()]:
        for name in CONFIG_SEARCH_ORDER:
            candidate = os.path.join(base_dir, name)
            if os.path.isfile(candidate):
                return candidate
    return None


def _read_config_file(cfg_fpath: str) -> Dict[str, Any]:
    """Read and parse a YAML config file from *cfg_fpath*.

    Raises :class:`ConfigurationError` on I/O or parse errors.
    """
    ext = os.path.splitext(cfg_fpath)[1].lower()
    if ext not in _YAML_EXTS:
        raise ConfigurationError(
            f"Unsupported config file extension '{ext}'. "
            "Only YAML files (.yaml, .yml) are supported."
        )

    try:
        with open(cfg_fpath, "r", encoding="utf-8") as f:
            raw_data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Error reading configuration file: {cfg_fpath}\n  {exc}") from exc

    if raw_data is None:
        return {}
    if not isinstance(raw_data, dict):
        raise ConfigurationError(
            "Top-level configuration content must be a YAML mapping (dictionary)."
        )
    return raw_data


def _format_validation_errors(exc: ValidationError) -> str:
    """Format Pydantic validation errors into a readable multi-line string."""
    lines: List[str] = []
    for err in exc.errors():
        loc = " → ".join(str(part) for part in err["loc"])
        lines.append(f"  • {loc}: {err['msg']}")
    return "\n".join(lines)


def parse_bridge_config(raw_data: Dict[str, Any]) -> BridgeConfig:
    """Expand env references in *raw_data* and validate it.

    Raises:
        ConfigurationError: with every validation error listed.
    """
    raw_data = expand_env_vars(raw_data)
    try:
        config = BridgeConfig.model_validate(raw_data)
    except ValidationError as exc:
        error_summary = _format_validation_errors(exc)
        raise ConfigurationError(
            f"Configuration validation failed ({len(exc.errors())} error(s)):\n" f"{error_summary}"
        ) from exc

    if config.directory.api_key is None and os.environ.get(API_KEY_ENV_VAR):
        config.directory.api_key = os.environ[API_KEY_ENV_VAR]
    return config


def load_bridge_config(cfg_fpath: Optional[str] = None) -> BridgeConfig:
    """Load, expand and validate the bridge configuration.

    Steps:
        1. Resolve the path (argument → env var → ``config.yaml`` in CWD)
        2. Read YAML (defaults when no file exists)
        3. Expand ``${VAR}`` environment variable references
        4. Validate against :class:`BridgeConfig` (Pydantic)

    Raises:
        ConfigurationError: On an explicit path that does not exist, parse
            errors, or validation failures (all errors reported at once).
    """
    explicit = cfg_fpath is not None
    if cfg_fpath is None:
        cfg_fpath = find_config_file()

    if cfg_fpath is None:
        logger.info("No configuration file found; using defaults.")
        return parse_bridge_config({})

    if not os.path.exists(cfg_fpath):
        if explicit:
            raise ConfigurationError(f"Configuration file does not exist: {cfg_fpath}")
        logger.info("Configuration file '%s' not found; using defaults.", cfg_fpath)
        return parse_bridge_config({})

    logger.debug("Loading configuration file: %s", cfg_fpath)
    config = parse_bridge_config(_read_config_file(cfg_fpath))
    logger.info(
        "Configuration '%s' loaded (v%s). %d preinstalled server(s).",
        cfg_fpath,
        config.version,
        len(config.servers),
    )
    return config
