"""Unit tests for the background recompute queue."""

import asyncio
from datetime import timedelta

import pytest
from prometheus_client import REGISTRY

from churnguard_server.lib.database import get_session_factory
from churnguard_server.lib.distributed_tracing import correlation_scope, get_correlation_id
from churnguard_server.models import Prediction
from churnguard_server.services.recompute_queue import RecomputeJob, RecomputeQueue


def jobs_with_outcome(outcome: str) -> float:
  return REGISTRY.get_sample_value('churnguard_recompute_jobs_total', {'outcome': outcome}) or 0.0


class RecordingProcessor:
  """Replaces RecomputeQueue.process; records jobs and the correlation ID they ran under."""

  def __init__(self, fail_for=()):
    self.jobs = []
    self.correlation_ids = []
    self.fail_for = set(fail_for)

  def __call__(self, job):
    self.jobs.append(job)
    self.correlation_ids.append(get_correlation_id())
    if job.user_id in self.fail_for:
      raise RuntimeError(f'scoring exploded for {job.user_id}')
    return False


def test_job_key_is_tenant_and_user():
  assert RecomputeJob('c1', 'u1', 'req-1').key == ('c1', 'u1')


def test_process_computes_and_stores_prediction(db_session, tenant):
  queue = RecomputeQueue(get_session_factory(), ttl=timedelta(hours=24))

  cached = queue.process(RecomputeJob(tenant.id, 'u1'))

  assert cached is False
  assert db_session.query(Prediction).filter_by(client_id=tenant.id, user_id='u1').count() == 1


def test_process_reuses_fresh_prediction(db_session, tenant):
  queue = RecomputeQueue(get_session_factory(), ttl=timedelta(hours=24))
  queue.process(RecomputeJob(tenant.id, 'u1'))

  cached = queue.process(RecomputeJob(tenant.id, 'u1'))

  assert cached is True
  assert db_session.query(Prediction).count() == 1


def test_submit_coalesces_jobs_for_waiting_user():
  queue = RecomputeQueue(session_factory=lambda: None)
  before = jobs_with_outcome('coalesced')

  assert queue.submit('c1', 'u1') is True
  assert queue.submit('c1', 'u1') is False
  assert queue.submit('c1', 'u2') is True
  assert queue.submit('c2', 'u1') is True

  assert queue.depth == 3
  assert jobs_with_outcome('coalesced') == before + 1


@pytest.mark.asyncio
async def test_worker_drains_jobs_and_allows_resubmission():
  queue = RecomputeQueue(session_factory=lambda: None)
  processor = RecordingProcessor()
  queue.process = processor
  await queue.start()
  try:
    queue.submit('c1', 'u1')
    queue.submit('c1', 'u2')
    await queue.join()

    # Once processed, the same user can be queued again
    assert queue.submit('c1', 'u1') is True
    await queue.join()
  finally:
    await queue.stop()

  assert [job.key for job in processor.jobs] == [('c1', 'u1'), ('c1', 'u2'), ('c1', 'u1')]
  assert queue.depth == 0
  assert queue.running is False


@pytest.mark.asyncio
async def test_failed_job_does_not_stop_the_worker():
  queue = RecomputeQueue(session_factory=lambda: None)
  processor = RecordingProcessor(fail_for={'broken'})
  queue.process = processor
  before = jobs_with_outcome('failed')
  await queue.start()
  try:
    queue.submit('c1', 'broken')
    queue.submit('c1', 'healthy')
    await queue.join()
    assert queue.running is True
  finally:
    await queue.stop()

  assert [job.user_id for job in processor.jobs] == ['broken', 'healthy']
  assert jobs_with_outcome('failed') == before + 1


@pytest.mark.asyncio
async def test_job_runs_under_submitting_request_correlation_id():
  queue = RecomputeQueue(session_factory=lambda: None)
  processor = RecordingProcessor()
  queue.process = processor
  await queue.start()
  try:
    with correlation_scope('req-abc'):
      queue.submit('c1', 'u1')
    await queue.join()
  finally:
    await queue.stop()

  assert processor.jobs[0].correlation_id == 'req-abc'
  assert processor.correlation_ids == ['req-abc']


@pytest.mark.asyncio
async def test_start_is_idempotent_and_stop_without_start_is_noop():
  queue = RecomputeQueue(session_factory=lambda: None)
  await queue.stop()

  await queue.start()
  worker = queue._worker
  await queue.start()

  assert queue._worker is worker
  await queue.stop()
  await asyncio.sleep(0)
  assert worker.done()
