"""
Configuration Manager module for the actuator.
"""
import copy
import json
import os
import socket
from typing import Any, Optional, Dict, Mapping

from ..utils import get_logger

logger = get_logger(__name__)

SHELL_CAPABILITY = 'actuator/shell'
HANDSHAKE_QUERY = 'query'
HANDSHAKE_REGISTER = 'register'

ENV_BROKER_URL = 'SEKS_BROKER_URL'
ENV_BROKER_TOKEN = 'SEKS_BROKER_TOKEN'
ENV_CONFIG_PATH = 'SEKS_ACTUATOR_CONFIG'

DEFAULT_CONFIG: Dict[str, Any] = {
    'capabilities': [SHELL_CAPABILITY],
    'websocket': {
        'handshake': HANDSHAKE_QUERY,
        'open_timeout_sec': 10,
        'ping_interval_sec': 20,
    },
    'reconnect': {
        'base_ms': 1000,
        'max_ms': 30000,
        'jitter_ms': 1000,
        'max_attempts': None,
    },
    'command_executor': {
        'default_timeout_ms': 30000,
        'max_timeout_ms': 300000,
        'console_encoding': 'utf-8',
    },
    'logging': {
        'level': 'INFO',
        'file': None,
    },
}


def _deep_merge(base: Dict[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``overlay`` into a copy of ``base``. ``None`` values in the overlay are skipped."""
    merged = copy.deepcopy(base)
    for key, value in overlay.items():
        if value is None:
            continue
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class ConfigManager:
    """
    Loads and manages actuator configuration.

    Values come from three layers, later ones winning: built-in defaults, an
    optional JSON file, and an overrides mapping built by the CLI/environment
    layer. Keys are read with dot-separated paths, e.g. ``reconnect.base_ms``.
    """

    def __init__(self, config_path: Optional[str] = None, overrides: Optional[Mapping[str, Any]] = None):
        """
        Initializes the ConfigManager, loading the optional configuration file.

        :param config_path: The path to a JSON configuration file, or None
        :type config_path: Optional[str]
        :param overrides: Nested mapping applied on top of the file contents
        :type overrides: Optional[Mapping[str, Any]]
        :raises: FileNotFoundError if the configuration file path is provided but does not exist
        :raises: ValueError if the file is invalid JSON or essential keys are missing
        """
        self._config_path = config_path
        file_data = self._load_config() if config_path else {}

        data = _deep_merge(DEFAULT_CONFIG, file_data)
        data = _deep_merge(data, overrides or {})
        data.setdefault('actuator_id', socket.gethostname())
        data.setdefault('cwd', os.getcwd())
        self._config_data: Dict[str, Any] = data

        self._validate_config()
        logger.info(f"Configuration loaded (file: {self._config_path or 'none'}, actuator: {self.get('actuator_id')})")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None,
                 overrides: Optional[Mapping[str, Any]] = None) -> 'ConfigManager':
        """
        Builds a configuration from ``SEKS_*`` environment variables.

        Environment values sit between the config file and ``overrides``.

        :param environ: Environment mapping (defaults to os.environ)
        :type environ: Optional[Mapping[str, str]]
        :param overrides: Values from the command line
        :type overrides: Optional[Mapping[str, Any]]
        :return: A validated ConfigManager
        :rtype: ConfigManager
        """
        environ = os.environ if environ is None else environ
        env_layer: Dict[str, Any] = {
            'broker_url': environ.get(ENV_BROKER_URL) or None,
            'agent_token': environ.get(ENV_BROKER_TOKEN) or None,
        }
        merged = _deep_merge(env_layer, overrides or {})
        return cls(config_path=environ.get(ENV_CONFIG_PATH) or None, overrides=merged)

    def _load_config(self) -> Dict[str, Any]:
        """
        Loads the configuration data from the JSON file.

        :raises: FileNotFoundError if the file doesn't exist
        :raises: ValueError if there are JSON parsing errors
        """
        if not os.path.exists(self._config_path):
            logger.critical(f"Configuration file not found: {self._config_path}")
            raise FileNotFoundError(f"Configuration file not found: {self._config_path}")

        try:
            with open(self._config_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.critical(f"Error decoding JSON from config file {self._config_path}: {e}")
            raise ValueError(f"Invalid JSON in configuration file: {e}") from e
        except OSError as e:
            logger.critical(f"Error reading config file {self._config_path}: {e}")
            raise ValueError(f"Could not read configuration file: {e}") from e

        if not isinstance(data, dict):
            raise ValueError("Configuration file content is not a valid JSON object.")
        return data

    def _validate_config(self):
        """
        Performs validation of essential configuration keys.

        :raises: ValueError if required keys are missing or invalid
        """
        missing_keys = [key for key in ('broker_url', 'agent_token') if not self.get(key)]
        if missing_keys:
            msg = f"Missing essential configuration keys: {', '.join(missing_keys)}"
            logger.critical(msg)
            raise ValueError(msg)

        broker_url = self.get('broker_url')
        if not isinstance(broker_url, str) or not broker_url.startswith(('http://', 'https://', 'ws://', 'wss://')):
            msg = f"Invalid 'broker_url' configuration: {broker_url!r}. Expected an http(s) or ws(s) URL."
            logger.critical(msg)
            raise ValueError(msg)

        capabilities = self.get('capabilities')
        if not isinstance(capabilities, list) or not all(isinstance(c, str) and c for c in capabilities):
            msg = "Invalid 'capabilities' configuration: Must be a list of non-empty strings."
            logger.critical(msg)
            raise ValueError(msg)

        handshake = self.get('websocket.handshake')
        if handshake not in (HANDSHAKE_QUERY, HANDSHAKE_REGISTER):
            msg = f"Invalid 'websocket.handshake' configuration: {handshake!r}. Expected '{HANDSHAKE_QUERY}' or '{HANDSHAKE_REGISTER}'."
            logger.critical(msg)
            raise ValueError(msg)

        max_attempts = self.get('reconnect.max_attempts')
        if max_attempts is not None and (not isinstance(max_attempts, int) or max_attempts < 0):
            logger.warning(f"Invalid value for reconnect.max_attempts: '{max_attempts}'. Using infinite attempts.")
            self._config_data['reconnect']['max_attempts'] = None

        logger.debug("Configuration validation passed.")

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Retrieves a configuration value using a dot-separated key path.

        :param key_path: The dot-separated path to the configuration key
        :type key_path: str
        :param default: The default value to return if the key is not found
        :type default: Any
        :return: The configuration value or the default value
        :rtype: Any
        """
        value: Any = self._config_data
        for key in key_path.split('.'):
            if not isinstance(value, dict) or key not in value:
                return default
            value = value[key]
        return default if value is None else value

    @property
    def all_config(self) -> Dict[str, Any]:
        """
        Returns a copy of the entire configuration dictionary, with the token masked.

        :return: Copy of configuration dictionary
        :rtype: Dict[str, Any]
        """
        data = copy.deepcopy(self._config_data)
        if data.get('agent_token'):
            data['agent_token'] = '***'
        return data
