"""Temporary address management."""
