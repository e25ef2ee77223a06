import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, String, UniqueConstraint

from churnguard_server.lib.database import Base, utcnow


class TrackedEvent(Base):
  """Behavioural event ingested from the collector.

  `timestamp` is the server receive time; the client clock is kept in
  `properties['timestamp']`. `event_id` is the client-generated idempotency
  key and is unique per tenant when present.
  """

  __tablename__ = 'events'

  id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
  client_id = Column(String(36), ForeignKey('clients.id'), nullable=False)
  event_id = Column(String(64), nullable=True)
  user_id = Column(String(255), nullable=True)
  session_id = Column(String(255), nullable=True)
  event_type = Column(String(100), nullable=False)
  page_url = Column(String(2048), nullable=True)
  properties = Column(JSON, nullable=True)
  timestamp = Column(DateTime, nullable=False, default=utcnow)

  __table_args__ = (
    UniqueConstraint('client_id', 'event_id', name='uq_events_client_event_id'),
    Index('ix_events_client_user_timestamp', 'client_id', 'user_id', 'timestamp'),
    Index('ix_events_event_type', 'event_type'),
  )
