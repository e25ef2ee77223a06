"""Distributed Tracing with Correlation IDs.

Provides correlation-ID based request tracking using Python contextvars.
The ID set by the HTTP middleware is also carried into background recompute
jobs so their log lines can be joined with the ingestion request that
triggered them.
"""

import contextvars
from contextlib import contextmanager
from typing import Iterator
from uuid import uuid4

NO_REQUEST_ID = 'no-request-id'

# Async-safe: propagates through awaits and into tasks created from the request
correlation_id: contextvars.ContextVar[str] = contextvars.ContextVar(
  'request_id', default=NO_REQUEST_ID
)


def get_correlation_id() -> str:
  """Retrieve the current correlation ID ('no-request-id' when unset)."""
  return correlation_id.get()


def set_correlation_id(request_id: str) -> None:
  """Set the correlation ID for the current context.

  Args:
      request_id: Unique request identifier (usually UUID or X-Correlation-ID header)
  """
  correlation_id.set(request_id)


@contextmanager
def correlation_scope(request_id: str | None) -> Iterator[str]:
  """Run a block under the given correlation ID, restoring the previous one after.

  Used by background workers that process jobs captured in another request.

  Args:
      request_id: Correlation ID to bind (a fresh one is generated if None)

  Yields:
      The bound correlation ID
  """
  bound = request_id or str(uuid4())
  token = correlation_id.set(bound)
  try:
    yield bound
  finally:
    correlation_id.reset(token)
