"""Unit tests for the churn risk scoring engine.

Covers score bounds, the no-data default, determinism, the sub-factor
formulas and the independent factor threshold rules.
"""

from datetime import datetime, timedelta

import pytest

from churnguard_server.services.risk_scoring import (
  FACTOR_MESSAGES,
  NO_DATA_SCORE,
  EventRecord,
  ScoringConfig,
  score_events,
)

NOW = datetime(2026, 3, 1, 12, 0, 0)


def events_of(event_type, count, days_ago=0.0, sessions=1):
  return [
    EventRecord(
      event_type=event_type,
      timestamp=NOW - timedelta(days=days_ago, minutes=i),
      session_id=f'session_{i % sessions}',
    )
    for i in range(count)
  ]


def test_no_events_scores_half_with_no_data_factor():
  assessment = score_events([], first_seen=None, now=NOW)

  assert assessment.risk_score == NO_DATA_SCORE
  assert assessment.risk_factors == {'no_data': FACTOR_MESSAGES['no_data']}


@pytest.mark.parametrize('count', [1, 2, 5, 10, 50, 100, 250])
@pytest.mark.parametrize('event_type', ['page_view', 'error', 'heartbeat'])
@pytest.mark.parametrize('days_ago', [0, 3, 40, 400])
def test_score_always_within_unit_interval(count, event_type, days_ago):
  for first_seen in (None, NOW - timedelta(days=1), NOW - timedelta(days=1000)):
    assessment = score_events(events_of(event_type, count, days_ago), first_seen=first_seen, now=NOW)
    assert 0.0 <= assessment.risk_score <= 1.0
    assert all(0.0 <= value <= 1.0 for value in assessment.components.values())


def test_scoring_is_deterministic():
  events = events_of('page_view', 7, days_ago=2, sessions=3) + events_of('error', 4, days_ago=1)
  first_seen = NOW - timedelta(days=30)

  first = score_events(events, first_seen=first_seen, now=NOW)
  second = score_events(list(reversed(events)), first_seen=first_seen, now=NOW)

  assert first.risk_score == second.risk_score
  assert first.risk_factors == second.risk_factors


def test_single_stale_page_view_lands_in_high_risk_band():
  events = [EventRecord(event_type='page_view', timestamp=NOW - timedelta(days=40), session_id='s1')]

  assessment = score_events(events, first_seen=None, now=NOW)

  assert assessment.components['recency'] == 1.0
  assert assessment.components['frequency'] == pytest.approx(0.99)
  assert assessment.components['engagement'] == pytest.approx(0.98)
  assert assessment.risk_score > 0.6
  assert 'inactivity' in assessment.risk_factors
  assert 'limited_exploration' in assessment.risk_factors


def test_active_long_tenured_user_scores_near_zero_without_factors():
  events = (
    events_of('page_view', 20, days_ago=0.5, sessions=4)
    + events_of('click', 30, days_ago=0.3, sessions=4)
    + events_of('heartbeat', 10, days_ago=0.1, sessions=4)
  )

  assessment = score_events(events, first_seen=NOW - timedelta(days=200), now=NOW)

  assert len(events) == 60
  assert assessment.components['tenure'] == 0.0
  assert assessment.components['error'] == 0.0
  assert assessment.risk_score < 0.15
  assert assessment.risk_factors == {}


def test_unknown_tenure_uses_neutral_sub_factor():
  events = events_of('page_view', 5)

  assessment = score_events(events, first_seen=None, now=NOW)

  assert assessment.components['tenure'] == 0.5
  assert 'new_user' not in assessment.risk_factors


def test_errors_and_promise_rejections_both_count_as_errors():
  events = events_of('error', 2) + events_of('promise_rejection', 2) + events_of('page_view', 5)

  assessment = score_events(events, first_seen=None, now=NOW)

  assert assessment.components['error'] == pytest.approx(0.4)
  assert 'error_prone' in assessment.risk_factors


def test_three_errors_are_not_error_prone():
  events = events_of('error', 3) + events_of('page_view', 5)

  assessment = score_events(events, first_seen=None, now=NOW)

  assert 'error_prone' not in assessment.risk_factors


def test_single_session_requires_more_than_ten_events():
  eleven_in_one_session = events_of('page_view', 11, sessions=1)
  ten_in_one_session = events_of('page_view', 10, sessions=1)
  eleven_in_two_sessions = events_of('page_view', 11, sessions=2)

  assert 'single_session' in score_events(eleven_in_one_session, None, NOW).risk_factors
  assert 'single_session' not in score_events(ten_in_one_session, None, NOW).risk_factors
  assert 'single_session' not in score_events(eleven_in_two_sessions, None, NOW).risk_factors


def test_new_user_factor_needs_known_recent_first_seen():
  events = events_of('page_view', 6, sessions=2)

  recent = score_events(events, first_seen=NOW - timedelta(days=3), now=NOW)
  established = score_events(events, first_seen=NOW - timedelta(days=10), now=NOW)

  assert 'new_user' in recent.risk_factors
  assert 'new_user' not in established.risk_factors


def test_factor_rules_are_independent_of_score():
  # Active today but with very few events: low score contribution from recency,
  # still flagged for low engagement
  events = events_of('page_view', 3, sessions=2)

  assessment = score_events(events, first_seen=NOW - timedelta(days=120), now=NOW)

  assert assessment.components['recency'] == 0.0
  assert 'low_engagement' in assessment.risk_factors
  assert 'inactivity' not in assessment.risk_factors


def test_future_timestamps_do_not_produce_negative_recency():
  events = [EventRecord(event_type='click', timestamp=NOW + timedelta(hours=2))]

  assessment = score_events(events, first_seen=NOW + timedelta(hours=2), now=NOW)

  assert assessment.components['recency'] == 0.0
  assert assessment.components['tenure'] == 1.0


def test_custom_weights_change_the_score():
  events = [EventRecord(event_type='page_view', timestamp=NOW - timedelta(days=40))]
  recency_only = ScoringConfig(
    recency_weight=1.0,
    frequency_weight=0.0,
    error_weight=0.0,
    engagement_weight=0.0,
    tenure_weight=0.0,
  )

  assert score_events(events, first_seen=None, now=NOW, config=recency_only).risk_score == 1.0


def test_weights_must_sum_to_one():
  with pytest.raises(ValueError, match='sum to 1.0'):
    ScoringConfig(recency_weight=0.5)
