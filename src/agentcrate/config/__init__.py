# src/agentcrate/config/__init__.py
"""
Project configuration and user settings.

Usage:
    >>> from agentcrate.config import load_project_config, load_user_settings
    >>> project = load_project_config()      # None outside a project
    >>> settings = load_user_settings()
"""

from .loader import (
    PROJECT_FILE,
    config_dir,
    default_project_name,
    find_project_file,
    load_project_config,
    load_user_settings,
    write_project_config,
)
from .models import (
    AgentConfig,
    BindMount,
    NetworkConfig,
    ProjectConfig,
    UserSettings,
    WorkspaceConfig,
    WorkspaceMode,
)

__all__ = [
    "PROJECT_FILE",
    "AgentConfig",
    "BindMount",
    "NetworkConfig",
    "ProjectConfig",
    "UserSettings",
    "WorkspaceConfig",
    "WorkspaceMode",
    "config_dir",
    "default_project_name",
    "find_project_file",
    "load_project_config",
    "load_user_settings",
    "write_project_config",
]
