"""Polling relay device simulator."""
