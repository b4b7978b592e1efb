"""
Configuration loader and manager for the chat relay.
Implements hot-reload capability with file watcher.
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, List, Literal, Optional
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler
import logging

logger = logging.getLogger(__name__)


class APIConfig(BaseModel):
    """API server configuration."""
    host: str = "0.0.0.0"
    port: int = 8000
    prefix: str = "/api/v1"
    cors_origins: List[str] = ["http://localhost:5173"]


class RelayConfig(BaseModel):
    """Relay engine and transport adapter behaviour."""
    fanout_mode: Literal["session", "echo"] = "session"
    heartbeat_interval: float = 30.0
    outbound_queue_size: int = Field(100, gt=0)


class TransportConfig(BaseModel):
    """Client-side transport settings handed to the relay client."""
    base_url: str = "ws://localhost:8000/ws/chat"
    reconnection_attempts: int = Field(5, ge=1)
    reconnection_delay: float = Field(1.0, ge=0)


class IdentityConfig(BaseModel):
    """External identity provider (bearer-token issuer)."""
    base_url: str = "http://localhost:1337/api"
    timeout: float = 10.0


class AppSettings(BaseSettings):
    """Application settings from environment variables."""

    app_name: str = "Chat Relay"
    app_version: str = "1.0.0"
    environment: str = "development"
    debug: bool = False

    # Single allowed origin for cross-origin handshakes, merged into cors_origins
    allowed_origin: Optional[str] = None

    log_level: str = "INFO"
    log_file: Optional[str] = None

    config_dir: str = "config"
    watch_config: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )


class ConfigLoader:
    """
    Configuration loader with hot-reload capability.
    Loads YAML configurations and merges with environment variables.
    """

    def __init__(self, config_dir: Optional[str] = None, settings: Optional[AppSettings] = None):
        self.settings = settings or AppSettings()
        self.config_dir = Path(config_dir or self.settings.config_dir)
        self.config_cache: Dict[str, Any] = {}
        self.observer = None

        self.reload_config()

    def load_config(self, path: str) -> Dict[str, Any]:
        """
        Load YAML configuration file.

        Args:
            path: Path to the YAML file

        Returns:
            Dictionary containing configuration data
        """
        try:
            file_path = self.config_dir / path if not Path(path).is_absolute() else Path(path)

            with open(file_path, 'r') as file:
                config = yaml.safe_load(file) or {}

            config = self._replace_env_vars(config)

            logger.info(f"Loaded configuration from {file_path}")
            return config

        except FileNotFoundError:
            logger.debug(f"Configuration file not found: {path}")
            return {}
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML file {path}: {e}")
            return {}

    def _replace_env_vars(self, config: Any) -> Any:
        """
        Recursively replace environment variables in configuration.
        Supports ${VAR_NAME} and ${VAR_NAME:-default} syntax.
        """
        if isinstance(config, dict):
            return {k: self._replace_env_vars(v) for k, v in config.items()}
        elif isinstance(config, list):
            return [self._replace_env_vars(item) for item in config]
        elif isinstance(config, str) and config.startswith("${") and config.endswith("}"):
            var_expr = config[2:-1]
            if ":-" in var_expr:
                var_name, default = var_expr.split(":-", 1)
                return os.getenv(var_name, default)
            else:
                return os.getenv(var_expr, config)
        return config

    def validate_config(self, config: Dict[str, Any]) -> bool:
        """
        Validate configuration against Pydantic models.

        Returns:
            True if valid, False otherwise
        """
        try:
            if "api" in config:
                APIConfig(**config["api"])

            if "relay" in config:
                RelayConfig(**config["relay"])

            if "transport" in config:
                TransportConfig(**config["transport"])

            if "identity" in config:
                IdentityConfig(**config["identity"])

            return True

        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e}")
            return False

    def merge_configs(self, *configs: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge multiple configuration dictionaries.
        Later configs override earlier ones.
        """
        result = {}

        for config in configs:
            self._deep_merge(result, config)

        return result

    def _deep_merge(self, target: Dict, source: Dict) -> Dict:
        """Deep merge source into target dictionary."""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._deep_merge(target[key], value)
            else:
                target[key] = value
        return target

    def get_environment_config(self) -> Dict[str, Any]:
        """
        Load environment-specific configuration.

        Returns:
            config.yaml merged with config.<environment>.yaml
        """
        env = self.settings.environment

        base_config = self.load_config("config.yaml")
        env_config = self.load_config(f"config.{env}.yaml")

        merged = self.merge_configs(base_config, env_config)

        merged["app"] = {
            "name": self.settings.app_name,
            "version": self.settings.app_version,
            "environment": self.settings.environment,
            "debug": self.settings.debug
        }

        return merged

    def reload_config(self):
        """Reload all configurations."""
        logger.info("Reloading configuration...")
        config = self.get_environment_config()

        if not self.validate_config(config):
            if self.config_cache:
                logger.warning("Configuration validation failed, using previous config")
                return
            logger.warning("Configuration validation failed, falling back to defaults")
            config = {"app": config.get("app", {})}

        self.config_cache = config

    def start_watching(self):
        """Start watching configuration files for changes."""
        if self.observer is not None or not self.settings.watch_config:
            return

        if not self.config_dir.is_dir():
            logger.warning(f"Config directory {self.config_dir} does not exist, hot reload disabled")
            return

        event_handler = ConfigFileHandler(self)
        self.observer = Observer()
        self.observer.schedule(event_handler, str(self.config_dir), recursive=False)
        self.observer.start()
        logger.info(f"Started watching configuration files in {self.config_dir}")

    def stop_watching(self):
        """Stop watching configuration files."""
        if self.observer is not None:
            self.observer.stop()
            self.observer.join()
            self.observer = None
            logger.info("Stopped watching configuration files")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation key.
        Example: get("relay.fanout_mode")
        """
        keys = key.split(".")
        value = self.config_cache

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value

    def get_api_config(self) -> APIConfig:
        """Get validated API configuration, with ALLOWED_ORIGIN folded in."""
        api_config = APIConfig(**self.config_cache.get("api", {}))
        origin = self.settings.allowed_origin
        if origin and origin not in api_config.cors_origins:
            api_config.cors_origins = [*api_config.cors_origins, origin]
        return api_config

    def get_relay_config(self) -> RelayConfig:
        """Get validated relay configuration."""
        return RelayConfig(**self.config_cache.get("relay", {}))

    def get_transport_config(self) -> TransportConfig:
        """Get validated transport configuration."""
        return TransportConfig(**self.config_cache.get("transport", {}))

    def get_identity_config(self) -> IdentityConfig:
        """Get validated identity provider configuration."""
        return IdentityConfig(**self.config_cache.get("identity", {}))


class ConfigFileHandler(FileSystemEventHandler):
    """Handler for configuration file changes."""

    def __init__(self, config_loader: ConfigLoader):
        self.config_loader = config_loader

    def on_modified(self, event):
        if not event.is_directory and str(event.src_path).endswith('.yaml'):
            logger.info(f"Configuration file changed: {event.src_path}")
            self.config_loader.reload_config()


# Global config instance
config_loader = ConfigLoader()


def get_config(key: str, default: Any = None) -> Any:
    """Get configuration value."""
    return config_loader.get(key, default)


def get_settings() -> AppSettings:
    """Get application settings."""
    return config_loader.settings
