"""API key authentication for the collection endpoints.

Tenants authenticate every request with the API key embedded in the collector
configuration. The key is resolved to a `Client` row; unknown keys are
rejected with 401 and a machine-readable error body.
"""

from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from churnguard_server.lib.structured_logger import StructuredLogger
from churnguard_server.models.client import Client

logger = StructuredLogger(__name__)


def error_detail(error_code: str, message: str) -> dict:
  """Standard error body used by every endpoint."""
  return {'error_code': error_code, 'message': message}


def require_api_key(api_key: str | None) -> str:
  """Return the API key or raise 400 if it is missing or blank.

  Raises:
      HTTPException: 400 API_KEY_MISSING
  """
  if not api_key or not api_key.strip():
    raise HTTPException(
      status_code=400,
      detail=error_detail('API_KEY_MISSING', 'API key is required'),
    )
  return api_key.strip()


def resolve_client(db: Session, api_key: str) -> Client:
  """Resolve an API key to its tenant.

  Args:
      db: Database session
      api_key: API key supplied by the collector

  Returns:
      The Client owning the key

  Raises:
      HTTPException: 401 INVALID_API_KEY if no tenant owns the key
      HTTPException: 500 PERSISTENCE_FAILURE if the lookup itself fails
  """
  try:
    client = db.query(Client).filter_by(api_key=api_key).one_or_none()
  except SQLAlchemyError as e:
    logger.error(f'Client lookup failed: {e}', exc_info=True)
    raise HTTPException(
      status_code=500,
      detail=error_detail('PERSISTENCE_FAILURE', 'Failed to look up API key'),
    ) from e

  if client is None:
    logger.warning('Rejected unknown API key')
    raise HTTPException(
      status_code=401,
      detail=error_detail('INVALID_API_KEY', 'Invalid API key'),
    )

  return client
