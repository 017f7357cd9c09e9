"""Infrastructure adapters (SMTP ingest, storage ports)."""
