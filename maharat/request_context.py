from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator


current_endpoint: ContextVar[str] = ContextVar('current_endpoint', default='background')


@contextmanager
def endpoint_context(label: str) -> Iterator[None]:
    token = current_endpoint.set(label)
    try:
        yield
    finally:
        current_endpoint.reset(token)
