"""
Request-scoped context: request id and owner, carried in context variables
so every log line inside a request can be correlated.
"""

import contextvars
import uuid

_request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)
_owner_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("owner", default=None)


def get_request_id() -> str | None:
    return _request_id_var.get()


def set_request_id(request_id: str) -> contextvars.Token:
    """Set the request ID in context. Returns token for reset."""
    return _request_id_var.set(request_id)


def get_owner() -> str | None:
    return _owner_var.get()


def set_owner(owner: str | None) -> contextvars.Token:
    return _owner_var.set(owner)


def generate_request_id() -> str:
    return f"req-{uuid.uuid4().hex[:16]}"


class RequestContext:
    """
    Context manager for request-scoped operations.

    Usage:
        with RequestContext(owner="u1") as ctx:
            logger.info("Syncing")   # carries ctx.request_id and owner

        with RequestContext(request_id="req-abc123"):
            ...
    """

    def __init__(self, request_id: str | None = None, owner: str | None = None):
        self.request_id = request_id or generate_request_id()
        self.owner = owner
        self._tokens: list[tuple[contextvars.ContextVar, contextvars.Token]] = []

    def __enter__(self) -> "RequestContext":
        self._tokens = [(_request_id_var, set_request_id(self.request_id))]
        if self.owner is not None:
            self._tokens.append((_owner_var, set_owner(self.owner)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens = []
