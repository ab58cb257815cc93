"""Single-use PKCE challenge registry and token exchange service."""

__version__ = "0.1.0"
