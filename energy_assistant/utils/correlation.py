"""Correlation ID helpers for request-scoped logging.

A ContextVar carries the per-request ``req_id`` so that provider calls and
aggregation queries awaited during a chat turn log with the same identifier
as the HTTP request that triggered them.
"""

from __future__ import annotations

import uuid
from contextvars import ContextVar
from typing import Optional

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def set_request_id(request_id: Optional[str] = None) -> str:
    """Store the correlation id for the current context and return it.

    A fresh uuid4 is generated when ``request_id`` is empty.
    """

    rid = request_id or str(uuid.uuid4())
    _request_id_var.set(rid)
    return rid


def get_request_id() -> str:
    """Return the current request correlation id, or empty string."""

    return _request_id_var.get()
