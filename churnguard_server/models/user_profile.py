"""User Profile SQLAlchemy Model

Server-owned recency record for each (client_id, user_id) pair.
"""

import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, UniqueConstraint

from churnguard_server.lib.database import Base, utcnow


class UserProfile(Base):
  """Per-tenant user profile.

  Table: user_profiles

  Columns:
      client_id: Tenant the user belongs to
      user_id: Identifier reported by the collector
      first_seen: Time of the first ingested event (write-once)
      last_active: Time of the latest ingested event (only moves forward)
      traits: Traits merged from `identify` events

  Constraints:
      - UNIQUE(client_id, user_id)
  """

  __tablename__ = 'user_profiles'

  id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
  client_id = Column(String(36), ForeignKey('clients.id'), nullable=False)
  user_id = Column(String(255), nullable=False)
  first_seen = Column(DateTime, nullable=False, default=utcnow)
  last_active = Column(DateTime, nullable=False, default=utcnow)
  traits = Column(JSON, nullable=True)

  __table_args__ = (UniqueConstraint('client_id', 'user_id', name='uq_user_profiles_client_user'),)

  def __repr__(self) -> str:
    return (
      f"<UserProfile(client_id='{self.client_id}', user_id='{self.user_id}', "
      f'last_active={self.last_active})>'
    )
