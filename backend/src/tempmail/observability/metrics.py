"""Prometheus metrics for the temporary mail service.

Defines operational metrics for the SMTP listener, the ingest pipeline
and the retention job.
"""

from prometheus_client import Counter, Gauge, Histogram

# SMTP transport metrics
smtp_connections_total = Counter(
    "tempmail_smtp_connections_total",
    "Total SMTP connections accepted or refused",
    ["outcome"]  # outcome: accepted|refused
)

smtp_active_connections = Gauge(
    "tempmail_smtp_active_connections",
    "Number of SMTP connections currently open"
)

smtp_commands_total = Counter(
    "tempmail_smtp_commands_total",
    "SMTP command replies by reply code",
    ["code"]
)

# Ingest metrics
inbound_messages_total = Counter(
    "tempmail_inbound_messages_total",
    "Messages handed off by SMTP sessions, by final outcome",
    ["outcome"]  # stored|unknown_recipient|expired|unroutable|parse_failure|error
)

inbound_message_size_bytes = Histogram(
    "tempmail_inbound_message_size_bytes",
    "Size of raw inbound messages in bytes",
    buckets=[1_000, 10_000, 100_000, 1_000_000, 5_000_000, 10_000_000, 26_214_400]
)

# Retention metrics
retention_deleted_total = Counter(
    "tempmail_retention_deleted_total",
    "Rows removed by the retention cleanup job",
    ["table"]  # temp_address|inbound_message
)
