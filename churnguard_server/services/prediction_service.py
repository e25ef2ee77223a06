"""Prediction service: freshness-TTL cache in front of the risk scoring engine.

A prediction created within the TTL (24 hours by default) is returned as-is;
otherwise the user's events are scored and a new prediction row is appended.
Predictions are history, never updated in place.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from churnguard_server.lib.database import utcnow
from churnguard_server.lib.metrics import record_prediction_served, scoring_duration_seconds
from churnguard_server.lib.structured_logger import StructuredLogger, log_event
from churnguard_server.models.prediction import Prediction
from churnguard_server.models.tracked_event import TrackedEvent
from churnguard_server.models.user_profile import UserProfile
from churnguard_server.services.risk_scoring import (
  DEFAULT_SCORING_CONFIG,
  EventRecord,
  ScoringConfig,
  score_events,
)

logger = StructuredLogger(__name__)

DEFAULT_PREDICTION_TTL = timedelta(hours=24)


@dataclass
class PredictionResult:
  """A prediction plus whether it was served from the freshness cache."""

  prediction: Prediction
  cached: bool


class PredictionService:
  """Service for reading and computing churn predictions of one tenant's users.

  Provides methods to:
  - Return the current prediction of a user, computing it when stale or missing
  - List every stored prediction of a tenant ranked by risk
  """

  def __init__(
    self,
    db: Session,
    ttl: timedelta = DEFAULT_PREDICTION_TTL,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
  ):
    """Initialize prediction service.

    Args:
        db: SQLAlchemy database session
        ttl: Freshness window of stored predictions
        config: Scoring model configuration
    """
    self.db = db
    self.ttl = ttl
    self.config = config

  def get_fresh_prediction(
    self, client_id: str, user_id: str, now: datetime
  ) -> Optional[Prediction]:
    """Latest prediction created less than `ttl` before `now`, if any."""
    return (
      self.db.query(Prediction)
      .filter(
        Prediction.client_id == client_id,
        Prediction.user_id == user_id,
        Prediction.created_at > now - self.ttl,
      )
      .order_by(Prediction.created_at.desc())
      .first()
    )

  def load_events(self, client_id: str, user_id: str) -> List[EventRecord]:
    """Events of a user, most recent first."""
    rows = (
      self.db.query(TrackedEvent.event_type, TrackedEvent.timestamp, TrackedEvent.session_id)
      .filter(TrackedEvent.client_id == client_id, TrackedEvent.user_id == user_id)
      .order_by(TrackedEvent.timestamp.desc())
      .all()
    )
    return [
      EventRecord(event_type=row.event_type, timestamp=row.timestamp, session_id=row.session_id)
      for row in rows
    ]

  def get_or_compute(
    self, client_id: str, user_id: str, now: Optional[datetime] = None
  ) -> PredictionResult:
    """Return the current prediction of a user, computing a new one if needed.

    Args:
        client_id: Tenant identifier
        user_id: User identifier within the tenant
        now: Reference time (defaults to current UTC time)

    Returns:
        PredictionResult with the prediction and cache flag

    Raises:
        SQLAlchemyError: If reading or writing the store fails
    """
    now = now or utcnow()

    cached = self.get_fresh_prediction(client_id, user_id, now)
    if cached is not None:
      record_prediction_served('cache')
      log_event('prediction.cache_hit', context={
        'client_id': client_id,
        'user_id': user_id,
        'prediction_id': cached.id,
      })
      return PredictionResult(prediction=cached, cached=True)

    started = time.perf_counter()
    events = self.load_events(client_id, user_id)
    profile = (
      self.db.query(UserProfile)
      .filter_by(client_id=client_id, user_id=user_id)
      .one_or_none()
    )
    assessment = score_events(
      events,
      first_seen=profile.first_seen if profile else None,
      now=now,
      config=self.config,
    )
    scoring_duration_seconds.observe(time.perf_counter() - started)

    prediction = Prediction(
      client_id=client_id,
      user_id=user_id,
      risk_score=assessment.risk_score,
      risk_factors=assessment.risk_factors,
      created_at=now,
    )
    self.db.add(prediction)
    self.db.commit()
    self.db.refresh(prediction)

    record_prediction_served('computed')
    logger.info(
      'Computed churn prediction',
      client_id=client_id,
      user_id=user_id,
      risk_score=round(assessment.risk_score, 4),
      event_count=len(events),
      factors=sorted(assessment.risk_factors),
    )
    return PredictionResult(prediction=prediction, cached=False)

  def list_predictions(self, client_id: str) -> List[Prediction]:
    """All predictions of a tenant ordered by descending risk score (never computes)."""
    return (
      self.db.query(Prediction)
      .filter(Prediction.client_id == client_id)
      .order_by(Prediction.risk_score.desc(), Prediction.created_at.desc())
      .all()
    )
