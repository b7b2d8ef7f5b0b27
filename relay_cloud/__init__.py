"""Relay command server."""
