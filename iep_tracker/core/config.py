import copy
import yaml
from pathlib import Path
import os
from typing import Any, Dict, Optional
import logging
import re

DEFAULT_DATA_DIR = "~/.iep_tracker"

DEFAULT_CONFIG: Dict[str, Any] = {
    "storage": {
        "database": f"{DEFAULT_DATA_DIR}/iep_tracker.db",
        "quota_bytes": 5 * 1024 * 1024,  # same order as browser local storage
        "max_backups": 7,
        "export_dir": f"{DEFAULT_DATA_DIR}/exports",
    },
    "autosave": {
        "delay_seconds": 1.0,
    },
    "google_drive": {
        "enabled": False,
        "client_secret_path": "${IEP_GOOGLE_CLIENT_SECRET}",
        "token_path": f"{DEFAULT_DATA_DIR}/google_token.json",
        "folder_name": ".iep-tracker-data",
        "data_file_name": "students-data.json",
        "timeout": 30,
    },
    "api": {
        "host": "127.0.0.1",
        "port": 8765,
    },
    "logging": {
        "level": "INFO",
        "file": f"{DEFAULT_DATA_DIR}/iep_tracker.log",
    },
}

# Config keys holding filesystem paths; ~ is expanded after loading
_PATH_KEYS = (
    ("storage", "database"),
    ("storage", "export_dir"),
    ("google_drive", "client_secret_path"),
    ("google_drive", "token_path"),
    ("logging", "file"),
)


def _merge(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    result = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


class Config:
    def __init__(self, config_path: Optional[str] = None, create: bool = True):
        logging.debug("Initializing Config class")

        if config_path:
            self.config_file = Path(config_path).expanduser().resolve()
            self.config_dir = self.config_file.parent
        else:
            self.config_dir = Path(DEFAULT_DATA_DIR).expanduser()
            self.config_file = self.config_dir / "config.yaml"

        logging.debug(f"Using config directory: {self.config_dir}")
        logging.debug(f"Using config file: {self.config_file}")

        # Load environment variables from .env file
        self._load_env_file()

        if create:
            self._ensure_config_exists()
        self._load_config()

    def section(self, name: str) -> Dict[str, Any]:
        """Return one top-level config section (empty dict if missing)."""
        value = self.data.get(name)
        return value if isinstance(value, dict) else {}

    def _ensure_config_exists(self) -> None:
        """Create default config if it doesn't exist"""
        if not self.config_dir.exists():
            logging.info(f"Creating config directory: {self.config_dir}")
            self.config_dir.mkdir(parents=True)

        if not self.config_file.exists():
            logging.info(f"Creating default config file: {self.config_file}")
            self.config_file.write_text(yaml.safe_dump(DEFAULT_CONFIG, sort_keys=False))

    def _load_env_file(self) -> None:
        """Load environment variables from .env file"""
        # Look for .env file in config directory or current directory
        env_files = [
            self.config_dir / ".env",
            Path.cwd() / ".env",
        ]

        env_file = None
        for path in env_files:
            if path.exists():
                env_file = path
                break

        if not env_file:
            logging.debug("No .env file found, skipping environment variable loading")
            return

        logging.info(f"Loading environment variables from: {env_file}")
        try:
            with open(env_file, 'r') as f:
                for line in f:
                    line = line.strip()
                    # Skip empty lines and comments
                    if not line or line.startswith('#'):
                        continue

                    # Parse KEY=VALUE format
                    match = re.match(r'^([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$', line)
                    if match:
                        key, value = match.groups()
                        value = value.strip('"').strip("'")
                        # Environment wins over .env
                        if key not in os.environ:
                            os.environ[key] = value
                            logging.debug(f"Loaded env var: {key}")
        except OSError as e:
            logging.warning(f"Error loading .env file: {e}")

    def _substitute_env_vars(self, data: Any) -> Any:
        """Recursively substitute ${VAR} / $VAR references. Unset variables become None."""
        if isinstance(data, dict):
            return {key: self._substitute_env_vars(value) for key, value in data.items()}
        elif isinstance(data, list):
            return [self._substitute_env_vars(item) for item in data]
        elif isinstance(data, str):
            if data.startswith('${') and data.endswith('}'):
                return os.environ.get(data[2:-1])
            elif data.startswith('$') and len(data) > 1:
                return os.environ.get(data[1:])
            return data
        else:
            return data

    def _expand_paths(self) -> None:
        for section, key in _PATH_KEYS:
            value = self.data.get(section, {}).get(key)
            if isinstance(value, str) and value:
                self.data[section][key] = os.path.expanduser(value)

    def _load_config(self) -> None:
        """Load configuration from file, layered over the defaults"""
        try:
            logging.debug(f"Loading config from: {self.config_file}")
            with open(self.config_file) as f:
                new_data = yaml.safe_load(f) or {}

            if not isinstance(new_data, dict):
                raise ValueError("Invalid config format: root must be a dictionary")

            self.data = _merge(DEFAULT_CONFIG, new_data)
        except (OSError, ValueError, yaml.YAMLError) as e:
            if self.config_file.exists():
                logging.error(f"Error loading config: {e}")
            logging.info("Using default configuration")
            self.data = self._get_default_config()

        self.data = self._substitute_env_vars(self.data)
        self._expand_paths()
        logging.debug(f"Loaded config data: {self.data}")

    def _get_default_config(self) -> Dict[str, Any]:
        return copy.deepcopy(DEFAULT_CONFIG)
