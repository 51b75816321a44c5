"""Cross-cutting plugins."""

from turnflow_core.plugins.analytics import WebhookAnalytics
from turnflow_core.plugins.keyword_nlu import KeywordNlu
from turnflow_core.plugins.request_logging import RequestLogging

__all__ = [
    "WebhookAnalytics",
    "KeywordNlu",
    "RequestLogging",
]
