"""
Isolated analysis worker and its message protocol.

The protocol module is pure and synchronous; the runner module moves it into
a separate process and manages job tokens, cancellation and fallback.
"""

from .protocol import AnalysisOutcome, build_request, handle_message, parse_response
from .runner import AnalyticsWorker

__all__ = [
    "AnalysisOutcome",
    "AnalyticsWorker",
    "build_request",
    "handle_message",
    "parse_response",
]
