import json
import logging
import os
from pathlib import Path
from typing import Dict, Any, Optional

from core.proxy.fetcher import FETCH_TIMEOUT, MAX_CONNECTIONS, USER_AGENT

logger = logging.getLogger(__name__)


def get_app_data_dir() -> Path:
    """Returns the directory for config and logs"""
    custom_dir = os.getenv('SUB_PROXY_HOME')
    if custom_dir:
        app_data_dir = Path(custom_dir)
    else:
        app_data_dir = Path.home() / '.config' / 'sub-recoded-proxy'

    app_data_dir.mkdir(parents=True, exist_ok=True)
    return app_data_dir


class ConfigManager:
    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path) if config_path else self._get_config_path()
        self.config = self._load_config()
        self._apply_env_overrides()

    def _get_config_path(self) -> Path:
        """Returns the config file path"""
        return get_app_data_dir() / 'config.json'

    def _get_default_config(self) -> dict:
        """Returns the default configuration"""
        return {
            'server': {
                'host': '0.0.0.0',
                'port': 7777,
            },

            'fetch': {
                'timeout': FETCH_TIMEOUT,
                'user_agent': USER_AGENT,
                'max_connections': MAX_CONNECTIONS,
            },

            'logging': {
                'level': 'INFO',
                'to_file': True,
            }
        }

    def _load_config(self) -> Dict[str, Any]:
        """Loads the config file merged over the defaults"""
        default_config = self._get_default_config()

        try:
            if self.config_path.exists():
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    loaded_config = json.load(f)
                    return self._deep_merge(default_config, loaded_config)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load config {self.config_path}: {e}")

        return default_config

    def _apply_env_overrides(self):
        """PORT, SUB_PROXY_HOST and SUB_PROXY_LOG_LEVEL win over the file"""
        port = os.getenv('PORT')
        if port:
            try:
                self.set('server.port', int(port))
            except ValueError:
                logger.warning(f"Ignoring invalid PORT value: {port!r}")

        host = os.getenv('SUB_PROXY_HOST')
        if host:
            self.set('server.host', host)

        level = os.getenv('SUB_PROXY_LOG_LEVEL')
        if level:
            self.set('logging.level', level.upper())

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Recursive dict merge"""
        result = base.copy()

        for key, value in update.items():
            if (key in result and
                    isinstance(result[key], dict) and
                    isinstance(value, dict)):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def save(self) -> bool:
        """Writes the configuration to disk"""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w', encoding='utf-8') as f:
                json.dump(self.config, f, indent=2, ensure_ascii=False)
            logger.info("Configuration saved")
            return True
        except OSError as e:
            logger.error(f"Failed to save config: {e}")
            return False

    def get(self, key: str, default: Any = None) -> Any:
        """Gets a value by dot-notation key"""
        value = self.config

        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any, save: bool = False) -> bool:
        """Sets a value by dot-notation key"""
        keys = key.split('.')
        config_ref = self.config

        for k in keys[:-1]:
            if k not in config_ref or not isinstance(config_ref[k], dict):
                config_ref[k] = {}
            config_ref = config_ref[k]

        config_ref[keys[-1]] = value

        if save:
            return self.save()
        return True

    def get_server_config(self) -> Dict[str, Any]:
        """Returns listen settings"""
        return self.get('server', {})

    def get_fetch_config(self) -> Dict[str, Any]:
        """Returns upstream fetch settings"""
        return self.get('fetch', {})

    def reset_to_defaults(self) -> bool:
        """Resets to defaults and saves"""
        self.config = self._get_default_config()
        return self.save()


# Singleton for global access
_config_instance = None


def get_config(config_path: Optional[Path] = None) -> ConfigManager:
    """Returns the global ConfigManager"""
    global _config_instance
    if _config_instance is None:
        _config_instance = ConfigManager(config_path)
    return _config_instance
