"""
Observability: structured logging and request correlation.

Usage:
    from blockos.observability import configure_logging, get_logger, RequestContext

    configure_logging()
    logger = get_logger(__name__)

    with RequestContext(owner="u1"):
        logger.info("Sync started")
"""

from .context import RequestContext, get_owner, get_request_id, set_request_id
from .logging import HumanFormatter, JSONFormatter, configure_logging, get_logger
from .middleware import CorrelationIdMiddleware

__all__ = [
    "CorrelationIdMiddleware",
    "HumanFormatter",
    "JSONFormatter",
    "RequestContext",
    "configure_logging",
    "get_logger",
    "get_owner",
    "get_request_id",
    "set_request_id",
]
