"""Ingestion service for events posted by the collector.

Stores an event for a tenant, then maintains the user's profile:
`first_seen` is written once when the profile is created and `last_active`
only ever moves forward. Profile failures are logged and counted but never
fail the ingestion of the event itself.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from churnguard_server.lib.database import utcnow
from churnguard_server.lib.metrics import profile_upsert_failures_total, record_event_ingested
from churnguard_server.lib.structured_logger import StructuredLogger, log_event
from churnguard_server.models.tracked_event import TrackedEvent
from churnguard_server.models.user_profile import UserProfile

logger = StructuredLogger(__name__)


@dataclass
class IngestedEvent:
  """Outcome of recording one event."""

  event: TrackedEvent
  duplicate: bool = False


class IngestionService:
  """Service for persisting events and user profiles of one request.

  All queries are scoped by `client_id`.
  """

  def __init__(self, db: Session):
    """Initialize ingestion service.

    Args:
        db: SQLAlchemy database session
    """
    self.db = db

  def record_event(
    self,
    client_id: str,
    event_type: str,
    user_id: Optional[str] = None,
    session_id: Optional[str] = None,
    page_url: Optional[str] = None,
    properties: Optional[Dict[str, Any]] = None,
    event_id: Optional[str] = None,
    now: Optional[datetime] = None,
  ) -> IngestedEvent:
    """Persist an event and upsert the user's profile.

    Args:
        client_id: Tenant resolved from the API key
        event_type: Event type reported by the collector
        user_id: Collector user id (profile is only maintained when present)
        session_id: Collector session id
        page_url: Page the event happened on
        properties: Event-specific properties
        event_id: Client-generated idempotency key
        now: Receive time (defaults to current UTC time)

    Returns:
        IngestedEvent; `duplicate` is True when `event_id` was already stored

    Raises:
        SQLAlchemyError: If the event cannot be stored
    """
    now = now or utcnow()

    if event_id:
      existing = self.db.query(TrackedEvent).filter_by(client_id=client_id, event_id=event_id).first()
      if existing is not None:
        record_event_ingested(event_type, 'duplicate')
        log_event('ingest.duplicate_event', context={
          'client_id': client_id,
          'event_id': event_id,
          'event_type': event_type,
        })
        return IngestedEvent(event=existing, duplicate=True)

    event = TrackedEvent(
      client_id=client_id,
      event_id=event_id,
      user_id=user_id,
      session_id=session_id,
      event_type=event_type,
      page_url=page_url,
      properties=dict(properties or {}),
      timestamp=now,
    )
    try:
      self.db.add(event)
      self.db.commit()
    except IntegrityError:
      # A concurrent retry of the same event won the unique constraint
      self.db.rollback()
      if event_id:
        existing = self.db.query(TrackedEvent).filter_by(client_id=client_id, event_id=event_id).first()
        if existing is not None:
          record_event_ingested(event_type, 'duplicate')
          return IngestedEvent(event=existing, duplicate=True)
      record_event_ingested(event_type, 'failed')
      raise
    except SQLAlchemyError:
      self.db.rollback()
      record_event_ingested(event_type, 'failed')
      raise

    record_event_ingested(event_type, 'stored')
    logger.info('Recorded event', client_id=client_id, user_id=user_id, event_type=event_type)

    if user_id:
      traits = (properties or {}).get('traits') if event_type == 'identify' else None
      self.touch_profile(client_id, user_id, now, traits=traits)

    return IngestedEvent(event=event)

  def touch_profile(
    self,
    client_id: str,
    user_id: str,
    now: datetime,
    traits: Optional[Dict[str, Any]] = None,
  ) -> Optional[UserProfile]:
    """Create the profile on first sight, else move `last_active` forward.

    Failures are logged and swallowed; the event is already stored.

    Args:
        client_id: Tenant identifier
        user_id: User identifier
        now: Activity time
        traits: Traits from an identify event to merge into the profile

    Returns:
        The profile, or None if the upsert failed
    """
    try:
      profile = self.db.query(UserProfile).filter_by(client_id=client_id, user_id=user_id).one_or_none()
      if profile is None:
        profile = UserProfile(
          client_id=client_id,
          user_id=user_id,
          first_seen=now,
          last_active=now,
          traits=dict(traits) if isinstance(traits, dict) else None,
        )
        self.db.add(profile)
      else:
        if profile.last_active is None or now > profile.last_active:
          profile.last_active = now
        if isinstance(traits, dict) and traits:
          # Reassign so the JSON column is marked dirty
          profile.traits = {**(profile.traits or {}), **traits}
      self.db.commit()
      return profile
    except SQLAlchemyError as e:
      self.db.rollback()
      profile_upsert_failures_total.inc()
      logger.warning(
        f'User profile update failed: {e}',
        client_id=client_id,
        user_id=user_id,
      )
      return None
