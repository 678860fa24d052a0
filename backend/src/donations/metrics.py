"""Business metrics for Prometheus monitoring."""
from prometheus_client import Counter

# Payment metrics
payments_attempted_total = Counter(
    "payments_attempted_total",
    "Total charges sent to the payment gateway",
    labelnames=["status", "kind"],  # kind: donation, gala, recurring
)

payments_declined_total = Counter(
    "payments_declined_total",
    "Total charges the gateway did not authorize",
    labelnames=["status"],
)

gateway_errors_total = Counter(
    "gateway_errors_total",
    "Total gateway calls that failed at the transport or API level",
    labelnames=["operation"],
)

# Receipt metrics
receipts_sent_total = Counter(
    "receipts_sent_total",
    "Total receipts emailed",
    labelnames=["path"],  # checkout, queue, recurring
)

receipts_queued_total = Counter(
    "receipts_queued_total",
    "Total receipts deferred to the receipt queue",
)

# Recurring metrics
recurring_charges_total = Counter(
    "recurring_charges_total",
    "Recurring billing outcomes",
    labelnames=["outcome"],  # charged, completed, failed, skipped
)
