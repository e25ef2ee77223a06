"""Background recompute work queue.

Ingestion dispatches a job here for every significant event and returns
immediately. A single worker task drains the queue and refreshes the user's
prediction through `PredictionService.get_or_compute`, so the freshness TTL
still bounds how often a user is actually rescored. Jobs for a
(client_id, user_id) pair that is already waiting are coalesced.
"""

import asyncio
from contextlib import suppress
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional, Set, Tuple

from sqlalchemy.orm import Session

from churnguard_server.lib.distributed_tracing import correlation_scope, get_correlation_id
from churnguard_server.lib.metrics import record_recompute_job, recompute_queue_depth
from churnguard_server.lib.structured_logger import StructuredLogger
from churnguard_server.services.prediction_service import DEFAULT_PREDICTION_TTL, PredictionService
from churnguard_server.services.risk_scoring import DEFAULT_SCORING_CONFIG, ScoringConfig

logger = StructuredLogger(__name__)


@dataclass(frozen=True)
class RecomputeJob:
  """One request to refresh a user's prediction."""

  client_id: str
  user_id: str
  correlation_id: Optional[str] = None

  @property
  def key(self) -> Tuple[str, str]:
    return (self.client_id, self.user_id)


class RecomputeQueue:
  """Asyncio queue with one worker that recomputes predictions off the request path.

  Usage:
      queue = RecomputeQueue(get_session_factory(), ttl=settings.prediction_ttl)
      await queue.start()
      queue.submit(client_id, user_id)
      ...
      await queue.stop()
  """

  def __init__(
    self,
    session_factory: Callable[[], Session],
    ttl: timedelta = DEFAULT_PREDICTION_TTL,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
  ):
    """Initialize the queue.

    Args:
        session_factory: Callable returning a new SQLAlchemy session per job
        ttl: Freshness window passed to the prediction service
        config: Scoring model configuration
    """
    self._session_factory = session_factory
    self._ttl = ttl
    self._config = config
    self._queue: asyncio.Queue = asyncio.Queue()
    self._pending: Set[Tuple[str, str]] = set()
    self._worker: Optional[asyncio.Task] = None

  @property
  def running(self) -> bool:
    return self._worker is not None and not self._worker.done()

  @property
  def depth(self) -> int:
    """Number of jobs waiting for the worker."""
    return self._queue.qsize()

  async def start(self) -> None:
    """Start the worker task (idempotent)."""
    if self.running:
      return
    self._worker = asyncio.create_task(self._run(), name='churnguard-recompute')
    logger.info('Recompute worker started')

  async def stop(self) -> None:
    """Cancel the worker. Jobs still waiting are discarded."""
    if self._worker is None:
      return
    self._worker.cancel()
    with suppress(asyncio.CancelledError):
      await self._worker
    self._worker = None
    logger.info('Recompute worker stopped', source='recompute', pending=self.depth)

  def submit(self, client_id: str, user_id: str) -> bool:
    """Schedule a recompute for a user without waiting for it.

    Returns:
        True if a job was queued, False if one for the same user was already waiting
    """
    job = RecomputeJob(client_id=client_id, user_id=user_id, correlation_id=get_correlation_id())
    if job.key in self._pending:
      record_recompute_job('coalesced')
      return False

    self._pending.add(job.key)
    self._queue.put_nowait(job)
    recompute_queue_depth.set(self._queue.qsize())
    return True

  async def join(self) -> None:
    """Wait until every submitted job has been processed."""
    await self._queue.join()

  async def _run(self) -> None:
    while True:
      job = await self._queue.get()
      self._pending.discard(job.key)
      recompute_queue_depth.set(self._queue.qsize())
      try:
        with correlation_scope(job.correlation_id):
          await asyncio.to_thread(self.process, job)
      except asyncio.CancelledError:
        raise
      except Exception as e:
        record_recompute_job('failed')
        logger.error(
          f'Recompute job failed: {e}',
          exc_info=True,
          client_id=job.client_id,
          user_id=job.user_id,
          source='recompute',
        )
      finally:
        self._queue.task_done()

  def process(self, job: RecomputeJob) -> bool:
    """Run one job in its own session.

    Returns:
        True if the prediction was still fresh and nothing was recomputed

    Raises:
        SQLAlchemyError: If reading or writing the store fails
    """
    with self._session_factory() as db:
      service = PredictionService(db, ttl=self._ttl, config=self._config)
      result = service.get_or_compute(job.client_id, job.user_id)

    record_recompute_job('completed')
    logger.debug(
      'Recompute job completed',
      client_id=job.client_id,
      user_id=job.user_id,
      source='cache' if result.cached else 'computed',
    )
    return result.cached
