"""HTTP adapter for the PKCE exchange service."""
