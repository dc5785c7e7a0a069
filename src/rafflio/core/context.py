"""Per-request and per-session log context (contextvars).

``correlation_id`` is set by the HTTP middleware for every request.
``purchase_id`` is bound while a webhook or a buyer's payment socket works on
one purchase, so every log line of that work can be traced back to it.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)
_purchase_id: ContextVar[str | None] = ContextVar("purchase_id", default=None)


def set_correlation_id(value: str) -> None:
    _correlation_id.set(value)


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def get_purchase_id() -> str | None:
    return _purchase_id.get()


@contextmanager
def bind_purchase(purchase_id: str | None) -> Iterator[None]:
    """Tag log records emitted inside the block with *purchase_id*."""
    token = _purchase_id.set(purchase_id)
    try:
        yield
    finally:
        _purchase_id.reset(token)
