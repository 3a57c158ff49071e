"""Stored platform integrations (provider connection status and credentials)."""
