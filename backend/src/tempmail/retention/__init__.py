"""Retention cleanup of expired addresses and old messages."""
