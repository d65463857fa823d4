"""Prometheus metrics for the invoice document core.

Exposes key metrics for monitoring:
- Applied and rejected actions by action type
- UBL import and export outcomes

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import Counter, generate_latest
from prometheus_client.openmetrics.exposition import CONTENT_TYPE_LATEST

# Action metrics
invoice_actions_total = Counter(
    "invoice_actions_total",
    "Total invoice actions dispatched",
    ["action_type", "outcome"],  # applied, rejected, invalid
)

# UBL codec metrics
invoice_ubl_imports_total = Counter(
    "invoice_ubl_imports_total",
    "Total UBL documents imported",
    ["status"],  # success, failed
)

invoice_ubl_exports_total = Counter(
    "invoice_ubl_exports_total",
    "Total UBL documents exported",
    ["status"],  # success, failed
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
