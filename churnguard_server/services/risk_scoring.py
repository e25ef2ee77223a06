"""Churn risk scoring engine.

Turns a user's recent events into a bounded risk score and a set of
human-readable risk factors. The model is a hand-weighted heuristic over five
behavioural sub-factors:

- Recency (0.3): days since the last event, saturating at 30 days
- Frequency (0.2): total event count, saturating at 100 events
- Errors (0.2): error/promise_rejection events, saturating at 10
- Engagement (0.2): page views + clicks, saturating at 50
- Tenure (0.1): days since first seen, saturating at 90 days

Factor derivation uses independent threshold rules, so a factor can appear
with a low score and vice versa. Scoring never reads the wall clock: callers
pass `now` explicitly, which makes results reproducible for a fixed input.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, Optional, Sequence

SECONDS_PER_DAY = 86400.0

ERROR_EVENT_TYPES = frozenset({'error', 'promise_rejection'})
ENGAGEMENT_EVENT_TYPES = frozenset({'page_view', 'click'})

NO_DATA_SCORE = 0.5
UNKNOWN_TENURE_FACTOR = 0.5

FACTOR_MESSAGES = {
  'no_data': 'No activity data available',
  'inactivity': 'User has not been active for more than 2 weeks',
  'low_engagement': 'User has very few interactions',
  'limited_exploration': 'User has viewed very few pages',
  'error_prone': 'User has run into repeated errors',
  'single_session': 'User activity is concentrated in a single session',
  'new_user': 'User account is less than a week old',
}


@dataclass
class ScoringConfig:
  """Weights, saturation points and factor thresholds of the risk model.

  The five weights must sum to 1.0 so the weighted sum stays in [0, 1].
  """

  recency_weight: float = 0.3
  frequency_weight: float = 0.2
  error_weight: float = 0.2
  engagement_weight: float = 0.2
  tenure_weight: float = 0.1

  # Saturation points of the normalized sub-factors
  recency_days_cap: float = 30.0
  frequency_event_cap: float = 100.0
  error_event_cap: float = 10.0
  engagement_event_cap: float = 50.0
  tenure_days_cap: float = 90.0

  # Factor thresholds
  inactivity_days: float = 14.0
  low_engagement_events: int = 5
  limited_exploration_page_views: int = 3
  error_prone_events: int = 3
  single_session_min_events: int = 10
  new_user_days: float = 7.0

  def __post_init__(self):
    total = (
      self.recency_weight
      + self.frequency_weight
      + self.error_weight
      + self.engagement_weight
      + self.tenure_weight
    )
    if abs(total - 1.0) > 1e-9:
      raise ValueError(f'Scoring weights must sum to 1.0 (got {total:.4f})')


DEFAULT_SCORING_CONFIG = ScoringConfig()


@dataclass(frozen=True)
class EventRecord:
  """Minimal view of a stored event needed for scoring."""

  event_type: str
  timestamp: datetime
  session_id: Optional[str] = None


@dataclass
class RiskAssessment:
  """Result of scoring one user.

  Attributes:
      risk_score: Weighted score clamped to [0, 1]
      risk_factors: factor key -> human readable reason (may be empty)
      components: normalized sub-factor values keyed by name
  """

  risk_score: float
  risk_factors: Dict[str, str]
  components: Dict[str, float] = field(default_factory=dict)


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
  """Clamp value into [low, high]."""
  return max(low, min(high, value))


def _days_between(earlier: datetime, later: datetime) -> float:
  return max((later - earlier).total_seconds() / SECONDS_PER_DAY, 0.0)


@dataclass(frozen=True)
class _EventStats:
  total: int
  errors: int
  page_views: int
  engagement: int
  sessions: int
  days_since_last: float


def _summarize(events: Sequence[EventRecord], now: datetime) -> _EventStats:
  last_event = max(event.timestamp for event in events)
  return _EventStats(
    total=len(events),
    errors=sum(1 for e in events if e.event_type in ERROR_EVENT_TYPES),
    page_views=sum(1 for e in events if e.event_type == 'page_view'),
    engagement=sum(1 for e in events if e.event_type in ENGAGEMENT_EVENT_TYPES),
    sessions=len({e.session_id for e in events if e.session_id}),
    days_since_last=_days_between(last_event, now),
  )


def compute_components(
  stats: _EventStats,
  tenure_days: Optional[float],
  config: ScoringConfig,
) -> Dict[str, float]:
  """Normalized sub-factors, each clamped to [0, 1] (higher means riskier)."""
  if tenure_days is None:
    tenure = UNKNOWN_TENURE_FACTOR
  else:
    tenure = clamp(1 - tenure_days / config.tenure_days_cap)

  return {
    'recency': clamp(stats.days_since_last / config.recency_days_cap),
    'frequency': clamp(1 - stats.total / config.frequency_event_cap),
    'error': clamp(stats.errors / config.error_event_cap),
    'engagement': clamp(1 - stats.engagement / config.engagement_event_cap),
    'tenure': tenure,
  }


def combine_components(components: Dict[str, float], config: ScoringConfig) -> float:
  """Weighted sum of the sub-factors, clamped to [0, 1]."""
  weighted = (
    components['recency'] * config.recency_weight
    + components['frequency'] * config.frequency_weight
    + components['error'] * config.error_weight
    + components['engagement'] * config.engagement_weight
    + components['tenure'] * config.tenure_weight
  )
  return clamp(weighted)


def derive_risk_factors(
  stats: _EventStats,
  tenure_days: Optional[float],
  config: ScoringConfig,
) -> Dict[str, str]:
  """Threshold rules explaining the risk; independent of the numeric score."""
  triggered = []

  if stats.days_since_last > config.inactivity_days:
    triggered.append('inactivity')
  if stats.total < config.low_engagement_events:
    triggered.append('low_engagement')
  if stats.page_views < config.limited_exploration_page_views:
    triggered.append('limited_exploration')
  if stats.errors > config.error_prone_events:
    triggered.append('error_prone')
  if stats.sessions < 2 and stats.total > config.single_session_min_events:
    triggered.append('single_session')
  if tenure_days is not None and tenure_days < config.new_user_days:
    triggered.append('new_user')

  return {key: FACTOR_MESSAGES[key] for key in triggered}


def score_events(
  events: Iterable[EventRecord],
  first_seen: Optional[datetime],
  now: datetime,
  config: ScoringConfig = DEFAULT_SCORING_CONFIG,
) -> RiskAssessment:
  """Score a user's event history.

  Args:
      events: The user's events (any order; most recent first as loaded from storage)
      first_seen: Profile creation time, or None when no profile is known
      now: Reference time of the computation
      config: Model weights and thresholds

  Returns:
      RiskAssessment with score, factors and sub-factor breakdown
  """
  events = list(events)
  if not events:
    return RiskAssessment(
      risk_score=NO_DATA_SCORE,
      risk_factors={'no_data': FACTOR_MESSAGES['no_data']},
    )

  stats = _summarize(events, now)
  tenure_days = _days_between(first_seen, now) if first_seen is not None else None

  components = compute_components(stats, tenure_days, config)
  return RiskAssessment(
    risk_score=combine_components(components, config),
    risk_factors=derive_risk_factors(stats, tenure_days, config),
    components=components,
  )
