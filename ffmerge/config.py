"""Configuration management for ffmerge."""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from ffmerge.models import Config
from ffmerge.utils.logger import get_logger
from ffmerge.utils.shell import get_git_root

logger = get_logger(__name__)

ENV_PREFIX = "FFMERGE_"


class ConfigError(Exception):
    """Configuration error."""
    pass


class ConfigManager:
    """Configuration manager with hierarchical loading and environment variable support."""

    def __init__(self, project_dir: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            project_dir: Checkout whose git root holds the project config;
                the current directory when not given
        """
        self._config: Optional[Config] = None
        self._user_config_path = Path.home() / ".ffmerge" / "config.yaml"
        self._project_dir = project_dir
        self._project_config_path: Optional[Path] = None
        self._find_project_config()

    def _find_project_config(self) -> None:
        """Find project configuration file at the git root."""
        self._project_config_path = None
        git_root = get_git_root(self._project_dir)
        if not git_root:
            return
        project_config = git_root / ".ffmerge" / "config.yaml"
        if project_config.exists() and project_config != self._user_config_path:
            self._project_config_path = project_config
            logger.debug(f"Found project config: {project_config}")

    def _expand_env_vars(self, data: Any) -> Any:
        """Recursively expand environment variables in configuration data.

        Supports formats:
        - ${VAR}
        - ${VAR:-default}
        """
        if isinstance(data, str):
            def replace_env_var(match):
                var_expr = match.group(1)
                if ":-" in var_expr:
                    var_name, default_value = var_expr.split(":-", 1)
                    return os.getenv(var_name, default_value)
                var_value = os.getenv(var_expr)
                if var_value is None:
                    logger.warning(f"Environment variable '{var_expr}' not found")
                    return match.group(0)
                return var_value

            return re.sub(r'\$\{([^}]+)\}', replace_env_var, data)
        elif isinstance(data, dict):
            return {key: self._expand_env_vars(value) for key, value in data.items()}
        elif isinstance(data, list):
            return [self._expand_env_vars(item) for item in data]

        return data

    def _load_yaml_file(self, path: Path) -> Dict[str, Any]:
        """Load and parse YAML configuration file.

        Args:
            path: Path to YAML file

        Returns:
            Parsed configuration data

        Raises:
            ConfigError: If file cannot be loaded or parsed
        """
        if not path.exists():
            return {}

        logger.debug(f"Loading config file: {path}")

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML file {path}: {e}")
        except OSError as e:
            raise ConfigError(f"Failed to load config file {path}: {e}")

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")

        return self._expand_env_vars(data)

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Merge configuration dictionaries recursively.

        Args:
            base: Base configuration
            override: Override configuration

        Returns:
            Merged configuration
        """
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def load_config(self) -> Config:
        """Load configuration from all sources.

        Loading order (later sources override earlier):
        1. Default configuration (from Config model)
        2. User configuration (~/.ffmerge/config.yaml)
        3. Project configuration (<git root>/.ffmerge/config.yaml)
        4. Environment variables (FFMERGE_SECTION__KEY)

        Returns:
            Loaded configuration

        Raises:
            ConfigError: If configuration is invalid
        """
        config_data: Dict[str, Any] = {}

        user_config = self._load_yaml_file(self._user_config_path)
        config_data = self._merge_configs(config_data, user_config)

        if self._project_config_path:
            project_config = self._load_yaml_file(self._project_config_path)
            config_data = self._merge_configs(config_data, project_config)

        config_data = self._apply_env_overrides(config_data)

        try:
            self._config = Config.model_validate(config_data)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}")

        logger.debug("Configuration loaded successfully")
        return self._config

    def _apply_env_overrides(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration.

        Environment variables are prefixed with FFMERGE_ and use double
        underscores to separate nested keys. For example:
        - FFMERGE_MERGE__TRUNK_BRANCH -> merge.trunk_branch
        - FFMERGE_TOOLS__GH -> tools.gh

        Args:
            config_data: Configuration data to override

        Returns:
            Configuration data with environment overrides applied
        """
        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue

            key_parts = key[len(ENV_PREFIX):].lower().split("__")

            current = config_data
            for part in key_parts[:-1]:
                if not isinstance(current.get(part), dict):
                    current[part] = {}
                current = current[part]

            final_key = key_parts[-1]
            current[final_key] = parse_value(value)

            logger.debug(f"Applied env override: {'.'.join(key_parts)} = {current[final_key]}")

        return config_data

    def get_config(self) -> Config:
        """Get current configuration, loading if necessary.

        Returns:
            Configuration object
        """
        if self._config is None:
            self._config = self.load_config()
        return self._config

    def reload_config(self) -> Config:
        """Reload configuration from all sources.

        Returns:
            Reloaded configuration
        """
        self._config = None
        self._find_project_config()
        return self.load_config()

    def use_project_dir(self, project_dir: Optional[Path]) -> None:
        """Look for the project config under another checkout.

        Args:
            project_dir: Checkout directory, or None for the current directory
        """
        self._project_dir = project_dir
        self._config = None
        self._find_project_config()

    def get_config_value(self, key: str) -> Any:
        """Get configuration value by dot-separated key.

        Args:
            key: Dot-separated key (e.g., 'merge.trunk_branch')

        Returns:
            Configuration value

        Raises:
            ConfigError: If key is not found
        """
        current: Any = self.get_config().model_dump()

        try:
            for part in key.split("."):
                current = current[part]
            return current
        except (KeyError, TypeError):
            raise ConfigError(f"Configuration key not found: {key}")

    def _project_path(self) -> Path:
        git_root = get_git_root(self._project_dir)
        base = git_root if git_root else (self._project_dir or Path.cwd())
        return base / ".ffmerge" / "config.yaml"

    def set_config_value(self, key: str, value: Any, user_level: bool = True) -> None:
        """Set configuration value and save to file.

        The resulting configuration is validated before the file is written.

        Args:
            key: Dot-separated key (e.g., 'merge.remote')
            value: Value to set
            user_level: If True, save to user config; if False, save to project config

        Raises:
            ConfigError: If the value is invalid or the file cannot be saved
        """
        if user_level:
            config_path = self._user_config_path
        else:
            config_path = self._project_config_path or self._project_path()

        config_data = self._load_yaml_file(config_path)

        key_parts = key.split(".")
        current = config_data
        for part in key_parts[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]
        current[key_parts[-1]] = value

        try:
            Config.model_validate(config_data)
        except ValidationError as e:
            raise ConfigError(f"Invalid value for {key}: {e}")

        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(config_path, "w") as f:
                yaml.safe_dump(config_data, f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            raise ConfigError(f"Failed to save configuration to {config_path}: {e}")

        if not user_level:
            self._project_config_path = config_path

        logger.info(f"Configuration saved to {config_path}: {key} = {value}")
        self.reload_config()

    def create_default_config(self, user_level: bool = True) -> Path:
        """Create default configuration file.

        Args:
            user_level: If True, create user config; if False, create project config

        Returns:
            Path to created configuration file

        Raises:
            ConfigError: If configuration cannot be created
        """
        config_path = self._user_config_path if user_level else self._project_path()

        if config_path.exists():
            logger.warning(f"Configuration file already exists: {config_path}")
            return config_path

        config_data = Config().model_dump(mode="json")

        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(config_path, "w") as f:
                f.write("# ffmerge configuration\n")
                f.write("# merge.trunk_branch: null means the repository's default branch\n\n")
                yaml.safe_dump(config_data, f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            raise ConfigError(f"Failed to create configuration file {config_path}: {e}")

        logger.info(f"Default configuration created: {config_path}")

        if not user_level:
            self._project_config_path = config_path

        self.reload_config()
        return config_path

    def list_config_files(self) -> Dict[str, Optional[Path]]:
        """List all configuration file paths.

        Returns:
            Dictionary with config file types and their paths
        """
        return {
            "user": self._user_config_path if self._user_config_path.exists() else None,
            "project": self._project_config_path,
        }


def parse_value(value: str) -> Any:
    """Convert a command line or environment string to bool, int, float, null or str."""
    lowered = value.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    if lowered in ("null", "none"):
        return None
    if value.isdigit():
        return int(value)
    try:
        return float(value)
    except ValueError:
        return value


# Global config manager instance
config_manager = ConfigManager()


def get_config(project_dir: Optional[Path] = None) -> Config:
    """Get current configuration.

    Args:
        project_dir: Checkout to read the project config from, when it is not
            the current directory

    Returns:
        Configuration object
    """
    if project_dir is not None:
        config_manager.use_project_dir(project_dir)
    return config_manager.get_config()
