"""Core modules for the chat relay."""

from .config import config_loader, get_config, get_settings
from .exceptions import (
    RelayError,
    InvalidMessage,
    DuplicateConnection,
    UnknownSession,
    RelayConnectionError,
    IdentityError,
)

__all__ = [
    'config_loader',
    'get_config',
    'get_settings',
    'RelayError',
    'InvalidMessage',
    'DuplicateConnection',
    'UnknownSession',
    'RelayConnectionError',
    'IdentityError',
]
