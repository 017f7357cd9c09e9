"""Inbox read API for temporary addresses."""
