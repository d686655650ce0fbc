"""Configuration for the MyQ garage door bridge."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from api import BASE_URL


DEFAULT_DATA_DIR = os.path.expanduser("~/.myq-garage")
DEFAULT_CONFIG_FILE = os.path.join(DEFAULT_DATA_DIR, "config.json")
DEFAULT_WEB_PORT = 8098
DEFAULT_NAME = "Garage Door"


@dataclass
class PollConfig:
    """Adaptive polling configuration."""

    active_interval_sec: float = 2      # door presumed moving
    idle_interval_sec: float = 10       # door at rest, or last poll failed


@dataclass
class Config:
    """Main application configuration."""

    # MyQ account
    username: str = ""
    password: str = ""

    # Pin a device when the account has more than one opener
    device_id: int | None = None

    # Pre-obtained token; skips the first login. Tokens from login live on
    # the MyQSession and never land here.
    security_token: str = ""

    name: str = DEFAULT_NAME
    base_url: str = BASE_URL

    # Polling
    poll: PollConfig = field(default_factory=PollConfig)

    # Web dashboard
    web_port: int = DEFAULT_WEB_PORT
    web_host: str = "0.0.0.0"

    # Paths
    data_dir: str = DEFAULT_DATA_DIR

    @property
    def config_file(self) -> str:
        return os.path.join(self.data_dir, "config.json")

    def apply_env(self, environ: dict[str, str] | None = None) -> None:
        """Apply MYQ_* environment variable overrides."""
        environ = os.environ if environ is None else environ
        if environ.get("MYQ_USERNAME"):
            self.username = environ["MYQ_USERNAME"]
        if environ.get("MYQ_PASSWORD"):
            self.password = environ["MYQ_PASSWORD"]
        if environ.get("MYQ_DEVICE_ID"):
            self.device_id = int(environ["MYQ_DEVICE_ID"])

    def to_dict(self) -> dict:
        data = {
            "username": self.username,
            "password": self.password,
            "device_id": self.device_id,
            "name": self.name,
            "base_url": self.base_url,
            "web_port": self.web_port,
            "web_host": self.web_host,
            "poll": {
                "active_interval_sec": self.poll.active_interval_sec,
                "idle_interval_sec": self.poll.idle_interval_sec,
            },
        }
        if self.security_token:
            data["security_token"] = self.security_token
        return data

    def save(self) -> None:
        """Save configuration to disk."""
        os.makedirs(self.data_dir, exist_ok=True)
        with open(self.config_file, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, config_file: str | None = None) -> Config:
        """Load configuration from disk."""
        path = config_file or DEFAULT_CONFIG_FILE
        config = cls()
        if os.path.exists(path):
            with open(path) as f:
                data = json.load(f)
            config.username = data.get("username", "")
            config.password = data.get("password", "")
            device_id = data.get("device_id")
            config.device_id = int(device_id) if device_id else None
            config.security_token = data.get("security_token", "")
            config.name = data.get("name", DEFAULT_NAME)
            config.base_url = data.get("base_url", BASE_URL)
            config.web_port = data.get("web_port", DEFAULT_WEB_PORT)
            config.web_host = data.get("web_host", "0.0.0.0")
            if "poll" in data:
                poll_data = data["poll"]
                config.poll = PollConfig(
                    active_interval_sec=poll_data.get("active_interval_sec", 2),
                    idle_interval_sec=poll_data.get("idle_interval_sec", 10),
                )
            # Override data_dir if the config was loaded from a non-default path
            if config_file:
                config.data_dir = str(Path(config_file).parent)
        return config
