# src/agentcrate/config/loader.py
"""
Loading of project configuration and user settings.

Configuration Hierarchy:
    1. Default values (defined in the models)
    2. TOML file (``agentcrate.toml`` found in the working directory or a
       parent; ``settings.toml`` in the user config directory)
    3. Environment variables (AGENTCRATE_*)
    4. Runtime overrides (passed to functions)

Environment variables map onto keys by section:
    AGENTCRATE_IMAGE=node:20             -> image
    AGENTCRATE_WORKSPACE_MODE=snapshot   -> workspace.mode
    AGENTCRATE_NETWORK_ENABLED=false     -> network.enabled
    AGENTCRATE_DEFAULT_IMAGE=alpine      -> default_image (user settings)

AGENTCRATE_CONFIG_DIR relocates the user config directory.
"""

import logging
import os
import re
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError

from ..exceptions import ConfigError
from .models import ProjectConfig, UserSettings

logger = logging.getLogger(__name__)

PROJECT_FILE = "agentcrate.toml"
SETTINGS_FILE = "settings.toml"
ENV_PREFIX = "AGENTCRATE_"
CONFIG_DIR_ENV = "AGENTCRATE_CONFIG_DIR"

PROJECT_TEMPLATE = """\
# agentcrate project configuration
project = "{project}"
{image_line}
# Tag of the managed project image (agentcrate-{project}:<version>)
version = "latest"

# Host bind mounts allowed into agent containers, host:container[:ro|rw]
mounts = []

[workspace]
# bind: live mount of this directory; snapshot: one-time copy into a volume
mode = "bind"
remote_path = "/workspace"
ignore = [".git"]

[network]
enabled = true

[agent]
command = []

[agent.env]
"""


def config_dir() -> Path:
    """User config directory (``~/.config/agentcrate`` unless overridden)."""
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(os.path.expanduser(override))
    return Path.home() / ".config" / "agentcrate"


def find_project_file(start: Path | None = None) -> Path | None:
    """Search ``start`` and its parents for ``agentcrate.toml``."""
    current = (start or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        candidate = directory / PROJECT_FILE
        if candidate.is_file():
            return candidate
    return None


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Values in override take precedence. Nested dictionaries are merged recursively.
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _parse_env_value(value: str, like: Any) -> Any:
    """
    Parse an environment value using the type of the current value.

    Args:
        value: String value from environment
        like: The value it replaces (decides bool/int/list parsing)
    """
    if isinstance(like, bool):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1", "on"):
            return True
        if lowered in ("false", "no", "0", "off"):
            return False
        raise ConfigError(f"expected a boolean, got {value!r}")
    if isinstance(like, int):
        try:
            return int(value)
        except ValueError:
            raise ConfigError(f"expected an integer, got {value!r}")
    if isinstance(like, list):
        return [v.strip() for v in value.split(",") if v.strip()]
    return value


def _apply_env_overrides(config: dict[str, Any], model: type[BaseModel]) -> dict[str, Any]:
    """
    Apply AGENTCRATE_* environment overrides to keys the model defines.

    A full key (``DEFAULT_IMAGE``) is tried first, then a section/key
    split on the first underscore (``WORKSPACE_MODE``).
    """
    defaults = _model_defaults(model)
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX) or key == CONFIG_DIR_ENV:
            continue
        name = key[len(ENV_PREFIX):].lower()

        if name in defaults and not isinstance(defaults[name], dict):
            config[name] = _parse_env_value(value, config.get(name, defaults[name]))
            continue

        section, _, nested_key = name.partition("_")
        section_defaults = defaults.get(section)
        if isinstance(section_defaults, dict) and nested_key in section_defaults:
            section_config = config.setdefault(section, {})
            if isinstance(section_config, dict):
                current = section_config.get(nested_key, section_defaults[nested_key])
                section_config[nested_key] = _parse_env_value(value, current)

    return config


def _model_defaults(model: type[BaseModel]) -> dict[str, Any]:
    """Default values of a model, one level of nested models expanded."""
    defaults: dict[str, Any] = {}
    for name, field in model.model_fields.items():
        if field.exclude:
            continue
        default = field.get_default(call_default_factory=True)
        if isinstance(default, BaseModel):
            default = default.model_dump(mode="json")
        defaults[name] = "" if default is None else default
    return defaults


def load_toml(path: Path) -> dict[str, Any]:
    """
    Read a TOML file.

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"invalid TOML in {path}: {e}", path=str(path)) from e
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e}", path=str(path)) from e
    logger.debug(f"Loaded config from {path}")
    return data


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "config"
    return f"{location}: {first.get('msg', 'invalid value')}"


def load_project_config(
    start: Path | None = None,
    overrides: dict[str, Any] | None = None,
    path: Path | None = None,
) -> ProjectConfig | None:
    """
    Load the project configuration.

    Args:
        start: Directory to search from (default: current directory)
        overrides: Runtime overrides merged last
        path: Explicit configuration file, skipping the search

    Returns:
        ProjectConfig, or None when no project file exists

    Raises:
        ConfigError: If the file exists but is invalid
    """
    config_path = path or find_project_file(start)
    if config_path is None:
        logger.debug(f"No {PROJECT_FILE} found")
        return None

    config = load_toml(config_path)
    config = _apply_env_overrides(config, ProjectConfig)
    if overrides:
        config = _deep_merge(config, overrides)

    try:
        project = ProjectConfig.model_validate({**config, "root": config_path.parent})
    except ValidationError as e:
        raise ConfigError(
            f"invalid project configuration in {config_path}: {_validation_message(e)}",
            path=str(config_path),
            next_steps=[f"Fix {config_path.name} or regenerate it with 'agentcrate init --force'"],
        ) from e
    logger.debug(f"Project {project.project!r} loaded from {config_path}")
    return project


def load_user_settings(overrides: dict[str, Any] | None = None) -> UserSettings:
    """
    Load user settings; a missing file yields defaults.

    Raises:
        ConfigError: If the settings file is invalid
    """
    settings_path = config_dir() / SETTINGS_FILE
    config: dict[str, Any] = {}
    if settings_path.is_file():
        config = load_toml(settings_path)
    config = _apply_env_overrides(config, UserSettings)
    if overrides:
        config = _deep_merge(config, overrides)
    if config.get("default_image") == "":
        config["default_image"] = None

    try:
        return UserSettings.model_validate(config)
    except ValidationError as e:
        raise ConfigError(
            f"invalid user settings in {settings_path}: {_validation_message(e)}",
            path=str(settings_path),
        ) from e


def default_project_name(directory: Path) -> str:
    """Derive a valid project name from a directory name."""
    name = re.sub(r"[^a-z0-9_-]+", "-", directory.name.lower()).strip("-_")
    return (name or "project")[:63]


def write_project_config(
    directory: Path,
    project: str,
    image: str | None = None,
    force: bool = False,
) -> Path:
    """
    Write a starter ``agentcrate.toml``.

    Raises:
        ConfigError: If the file exists and ``force`` is False, or the
            project name is invalid
    """
    path = directory / PROJECT_FILE
    if path.exists() and not force:
        raise ConfigError(
            f"{path} already exists",
            path=str(path),
            next_steps=["Pass --force to overwrite it"],
        )

    try:
        ProjectConfig(project=project, image=image)
    except ValidationError as e:
        raise ConfigError(f"invalid project: {_validation_message(e)}", path=str(path)) from e

    image_line = f'image = "{image}"' if image else '# image = "node:20-bookworm"'
    content = PROJECT_TEMPLATE.format(project=project.lower(), image_line=image_line)
    try:
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot write {path}: {e}", path=str(path)) from e
    logger.debug(f"Wrote {path}")
    return path
