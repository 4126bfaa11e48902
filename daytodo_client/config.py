"""Configuration management for the day todo client."""

import os
import json
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

DEFAULTS: Dict[str, Any] = {
    'server_url': 'http://127.0.0.1:8000',
    'username': None,
    'password': None,
    'request_timeout': 10.0,
    # pointer travel (px) before a mouse/pen press becomes a drag
    'activation_distance': 8.0,
    # touch presses must be held this long (seconds) without moving more
    # than touch_tolerance px before they become a drag
    'touch_delay': 0.25,
    'touch_tolerance': 5.0,
}


class Config:
    """Configuration manager for the day todo client.

    Values live in a JSON file; missing keys fall back to DEFAULTS. The file
    is only written when a setter is used.
    """

    def __init__(self, config_file: Optional[str] = None):
        self.config_file = config_file or os.path.join(
            os.path.expanduser('~'), '.daytodo', 'client.json'
        )
        self._config: Dict[str, Any] = {}
        self.load()

    def load(self) -> None:
        """Load configuration from file."""
        if os.path.exists(self.config_file):
            try:
                with open(self.config_file, 'r') as f:
                    self._config = json.load(f)
            except (OSError, ValueError):
                # If file is corrupted, start with empty config
                logger.warning('could not read %s; using defaults', self.config_file)
                self._config = {}
        else:
            self._config = {}

    def save(self) -> None:
        """Save configuration to file."""
        os.makedirs(os.path.dirname(self.config_file), exist_ok=True)
        with open(self.config_file, 'w') as f:
            json.dump(self._config, f, indent=2)

    def get(self, key: str) -> Any:
        return self._config.get(key, DEFAULTS.get(key))

    @property
    def server_url(self) -> str:
        return self.get('server_url')

    @server_url.setter
    def server_url(self, value: str):
        self._config['server_url'] = value
        self.save()

    @property
    def username(self) -> Optional[str]:
        return self.get('username')

    @username.setter
    def username(self, value: str):
        self._config['username'] = value
        self.save()

    @property
    def password(self) -> Optional[str]:
        return self.get('password')

    @password.setter
    def password(self, value: str):
        self._config['password'] = value
        self.save()

    @property
    def request_timeout(self) -> float:
        return float(self.get('request_timeout'))

    @property
    def activation_distance(self) -> float:
        return float(self.get('activation_distance'))

    @property
    def touch_delay(self) -> float:
        return float(self.get('touch_delay'))

    @property
    def touch_tolerance(self) -> float:
        return float(self.get('touch_tolerance'))
