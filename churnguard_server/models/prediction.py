import uuid

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, Float, ForeignKey, Index, String

from churnguard_server.lib.database import Base, utcnow

# Bands used by the dashboard risk table
LOW_RISK_CEILING = 0.3
MEDIUM_RISK_CEILING = 0.7


def risk_level_for(score: float) -> str:
  """Map a risk score in [0, 1] to 'low', 'medium' or 'high'."""
  if score < LOW_RISK_CEILING:
    return 'low'
  if score < MEDIUM_RISK_CEILING:
    return 'medium'
  return 'high'


class Prediction(Base):
  """Churn risk prediction for a user.

  Predictions are append-only history: a recomputation inserts a new row and
  the current prediction is the newest row inside the freshness TTL.
  """

  __tablename__ = 'predictions'

  id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
  client_id = Column(String(36), ForeignKey('clients.id'), nullable=False)
  user_id = Column(String(255), nullable=False)
  risk_score = Column(Float, nullable=False)
  risk_factors = Column(JSON, nullable=True)
  created_at = Column(DateTime, nullable=False, default=utcnow)

  __table_args__ = (
    CheckConstraint('risk_score >= 0 AND risk_score <= 1', name='ck_predictions_risk_score_range'),
    Index('ix_predictions_client_user_created', 'client_id', 'user_id', 'created_at'),
    Index('ix_predictions_client_risk', 'client_id', 'risk_score'),
  )

  @property
  def risk_level(self) -> str:
    return risk_level_for(self.risk_score)

  def to_dict(self) -> dict:
    """Convert model to dictionary."""
    return {
      'id': self.id,
      'client_id': self.client_id,
      'user_id': self.user_id,
      'risk_score': self.risk_score,
      'risk_level': self.risk_level,
      'risk_factors': self.risk_factors or {},
      'created_at': self.created_at.isoformat() if self.created_at else None,
    }
