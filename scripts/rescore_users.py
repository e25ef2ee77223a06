"""Batch rescoring job script.

Recomputes the churn prediction of every user of a tenant whose current
prediction is missing or older than the freshness TTL, so the ranked
prediction list stays current for users who stopped sending events.

Designed to run as a daily scheduled job.
Exit codes: 0 success, 1 database connection failure, 2 scoring failure.
"""

import argparse
import logging
import sys
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import create_engine, distinct, text
from sqlalchemy.orm import Session, sessionmaker

from churnguard_server.lib.database import utcnow
from churnguard_server.lib.settings import get_settings
from churnguard_server.models.client import Client
from churnguard_server.models.tracked_event import TrackedEvent
from churnguard_server.services.prediction_service import PredictionService

# Configure logging
logging.basicConfig(
  level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def find_tenant_users(session: Session, client_id: str) -> List[str]:
  """Distinct user ids with at least one event for the tenant."""
  rows = (
    session.query(distinct(TrackedEvent.user_id))
    .filter(TrackedEvent.client_id == client_id, TrackedEvent.user_id.isnot(None))
    .all()
  )
  return sorted(row[0] for row in rows)


def rescore_tenant(
  session: Session,
  client_id: str,
  ttl: timedelta,
  now: Optional[datetime] = None,
) -> dict:
  """Refresh every stale prediction of one tenant.

  Args:
      session: SQLAlchemy database session
      client_id: Tenant to rescore
      ttl: Freshness window; fresh predictions are left alone
      now: Reference time (defaults to current UTC time)

  Returns:
      Dictionary with `users`, `recomputed` and `fresh` counts

  Raises:
      Exception: If scoring or persistence fails
  """
  now = now or utcnow()
  service = PredictionService(session, ttl=ttl)

  user_ids = find_tenant_users(session, client_id)
  logger.info(f'Found {len(user_ids)} users for client {client_id}')

  recomputed = 0
  for user_id in user_ids:
    result = service.get_or_compute(client_id, user_id, now=now)
    if not result.cached:
      recomputed += 1

  return {'users': len(user_ids), 'recomputed': recomputed, 'fresh': len(user_ids) - recomputed}


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
  parser = argparse.ArgumentParser(description='Recompute stale churn predictions')
  parser.add_argument('--client-id', help='Only rescore this tenant (default: all tenants)')
  return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None):
  """Main entry point for the rescoring job."""
  args = parse_args(argv)
  settings = get_settings()

  logger.info('=' * 80)
  logger.info('Starting churn rescoring job')
  logger.info('=' * 80)

  try:
    engine = create_engine(settings.database_url)
    with engine.connect() as conn:
      conn.execute(text('SELECT 1'))
    SessionFactory = sessionmaker(bind=engine)
    session = SessionFactory()
  except Exception as e:
    logger.error(
      f'Fatal error connecting to database: {e}. Check DATABASE_URL and that migrations ran '
      f'(alembic upgrade head).',
      exc_info=True,
    )
    sys.exit(1)

  try:
    if args.client_id:
      client_ids = [args.client_id]
    else:
      client_ids = [client.id for client in session.query(Client).all()]

    totals = {'users': 0, 'recomputed': 0, 'fresh': 0}
    for client_id in client_ids:
      result = rescore_tenant(session, client_id, settings.prediction_ttl)
      for key, value in result.items():
        totals[key] += value

    logger.info(
      f'Rescoring job completed successfully: {len(client_ids)} tenants, '
      f'{totals["users"]} users, {totals["recomputed"]} recomputed, '
      f'{totals["fresh"]} still fresh'
    )
  except Exception as e:
    logger.error(f'Rescoring job failed: {e}', exc_info=True)
    session.rollback()
    sys.exit(2)
  finally:
    session.close()

  sys.exit(0)


if __name__ == '__main__':
  main()
