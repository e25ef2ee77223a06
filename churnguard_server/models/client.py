"""Tenant (client website) registered with an API key."""

import uuid

from sqlalchemy import Column, DateTime, String

from churnguard_server.lib.database import Base, utcnow


class Client(Base):
  """A tenant identified by its API key.

  Table: clients

  All other tables are scoped by `client_id`. Rows are created by the API key
  issuance service (outside this repository) or by `scripts/seed_demo_data.py`.
  """

  __tablename__ = 'clients'

  id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
  name = Column(String(255), nullable=False)
  api_key = Column(String(128), nullable=False, unique=True, index=True)
  created_at = Column(DateTime, nullable=False, default=utcnow)

  def __repr__(self) -> str:
    return f"<Client(id='{self.id}', name='{self.name}')>"
