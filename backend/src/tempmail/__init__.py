"""Temporary email service."""
