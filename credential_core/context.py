"""
Request context for the Credential Core service.

A ``RequestContext`` travels explicitly down the call chain from the HTTP
layer to the services. It carries the client metadata recorded on refresh
tokens and failed login attempts, plus the correlation id used to tie log
lines of one request together.
"""
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, MutableMapping, Optional, Tuple


def new_correlation_id() -> str:
    """Generate a fresh correlation id."""
    return uuid.uuid4().hex


@dataclass(frozen=True)
class RequestContext:
    """Client metadata and correlation id for one request."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_id: Optional[str] = None
    correlation_id: str = field(default_factory=new_correlation_id)

    # PUBLIC_INTERFACE
    def logger(self, logger: logging.Logger) -> "ContextLoggerAdapter":
        """
        Wrap a module logger so every message carries this request's correlation id.

        Args:
            logger: Module-level logger.

        Returns:
            Logger adapter bound to this context.
        """
        return ContextLoggerAdapter(logger, {"correlation_id": self.correlation_id})


class ContextLoggerAdapter(logging.LoggerAdapter):
    """Prefix log messages with the request's correlation id."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("correlation_id", self.extra["correlation_id"])
        kwargs["extra"] = extra
        return f"[{self.extra['correlation_id']}] {msg}", kwargs
