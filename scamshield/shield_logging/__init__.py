"""
Structured logging for ScamShield.

JSON logs with timestamp, event_type, request_id and analyzer fields.
Use get_logger() in all modules for aggregation-friendly output.
"""

from scamshield.shield_logging.logger import bind_request, configure_logging, get_logger, request_context

__all__ = ["bind_request", "configure_logging", "get_logger", "request_context"]
