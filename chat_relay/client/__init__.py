"""Client-side adapters: relay transport client and identity provider client."""

from .relay_client import RelayClient
from .identity_client import IdentityClient, auth_headers

__all__ = ['RelayClient', 'IdentityClient', 'auth_headers']
