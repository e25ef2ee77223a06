"""Tracking API Router.

Collection endpoint for events posted by the ChurnGuard agent.
"""

from typing import Any, Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from churnguard_server.lib.auth import error_detail, require_api_key, resolve_client
from churnguard_server.lib.database import get_db_session
from churnguard_server.lib.settings import Settings, get_settings
from churnguard_server.lib.structured_logger import StructuredLogger
from churnguard_server.services.ingestion_service import IngestionService

router = APIRouter()
logger = StructuredLogger(__name__)

RecomputeDispatcher = Callable[[str, str], Any]


class TrackEventRequest(BaseModel):
  """Event envelope posted by the agent (camelCase, snake_case also accepted)."""

  model_config = ConfigDict(populate_by_name=True, extra='ignore')

  api_key: Optional[str] = Field(
    None, validation_alias=AliasChoices('apiKey', 'api_key'), description='Tenant API key'
  )
  event_type: str = Field(
    ...,
    min_length=1,
    max_length=64,
    validation_alias=AliasChoices('eventType', 'event_type'),
    description='page_view, click, form_submit, error, promise_rejection, identify, heartbeat or custom name',
  )
  user_id: Optional[str] = Field(
    None, max_length=255, validation_alias=AliasChoices('userId', 'user_id')
  )
  session_id: Optional[str] = Field(
    None, max_length=255, validation_alias=AliasChoices('sessionId', 'session_id')
  )
  page_url: Optional[str] = Field(None, validation_alias=AliasChoices('pageUrl', 'page_url'))
  # Older agents sent the properties as `element_info`
  properties: Optional[dict[str, Any]] = Field(
    None, validation_alias=AliasChoices('properties', 'element_info')
  )
  event_id: Optional[str] = Field(
    None,
    max_length=64,
    validation_alias=AliasChoices('eventId', 'event_id'),
    description='Client-generated idempotency key',
  )
  timestamp: Optional[str] = Field(None, description='Client timestamp (ISO 8601)')


def get_recompute_dispatcher(request: Request) -> Optional[RecomputeDispatcher]:
  """Submit function of the app's recompute queue, or None when it is not running."""
  queue = getattr(request.app.state, 'recompute_queue', None)
  return queue.submit if queue is not None else None


@router.post('/track-event')
async def track_event(
  body: TrackEventRequest,
  db: Session = Depends(get_db_session),
  dispatch: Optional[RecomputeDispatcher] = Depends(get_recompute_dispatcher),
  settings: Settings = Depends(get_settings),
):
  """Store one event for the tenant owning the API key.

  Significant events (page views, form submits and identify by default)
  dispatch a prediction recompute for the user without waiting for it.

  Returns:
      {"success": true}, plus "duplicate": true when `eventId` was already stored

  Raises:
      400: Missing API key or invalid body
      401: Unknown API key
      500: Event could not be stored
  """
  api_key = require_api_key(body.api_key)
  client = resolve_client(db, api_key)

  properties = dict(body.properties or {})
  if body.timestamp:
    properties.setdefault('timestamp', body.timestamp)

  try:
    service = IngestionService(db)
    ingested = service.record_event(
      client_id=client.id,
      event_type=body.event_type,
      user_id=body.user_id,
      session_id=body.session_id,
      page_url=body.page_url,
      properties=properties,
      event_id=body.event_id,
    )
  except SQLAlchemyError as e:
    logger.error(
      f'Failed to store event: {e}',
      exc_info=True,
      client_id=client.id,
      event_type=body.event_type,
    )
    raise HTTPException(
      status_code=500,
      detail=error_detail('PERSISTENCE_FAILURE', 'Failed to store event'),
    ) from e

  if ingested.duplicate:
    return {'success': True, 'duplicate': True}

  if body.user_id and body.event_type in settings.significant_event_types:
    if dispatch is None:
      logger.warning(
        'Recompute queue not running; prediction will refresh on next read',
        client_id=client.id,
        user_id=body.user_id,
      )
    else:
      dispatch(client.id, body.user_id)

  return {'success': True}
