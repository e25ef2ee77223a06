"""FastAPI application for the ChurnGuard collection and prediction API."""

import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from churnguard_server.lib.auth import error_detail
from churnguard_server.lib.database import (
  configure_engine,
  create_tables,
  get_session_factory,
  is_engine_configured,
)
from churnguard_server.lib.distributed_tracing import set_correlation_id
from churnguard_server.lib.metrics import record_request_duration
from churnguard_server.lib.settings import get_settings
from churnguard_server.lib.structured_logger import StructuredLogger, log_request
from churnguard_server.routers import router
from churnguard_server.services.recompute_queue import RecomputeQueue

logger = StructuredLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
  """Manage application lifespan.

  Configures the database engine (unless one is already configured), creates
  tables when AUTO_CREATE_TABLES is on and runs the recompute worker.
  """
  if not is_engine_configured():
    configure_engine(settings.database_url)
  if settings.auto_create_tables:
    create_tables()

  recompute_queue = RecomputeQueue(get_session_factory(), ttl=settings.prediction_ttl)
  await recompute_queue.start()
  app.state.recompute_queue = recompute_queue
  try:
    yield
  finally:
    await recompute_queue.stop()
    app.state.recompute_queue = None


app = FastAPI(
  title='ChurnGuard API',
  description='Behavioural event collection and churn risk prediction',
  version='0.1.0',
  lifespan=lifespan,
)

# The agent posts from arbitrary customer sites
app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.cors_origins,
  allow_credentials='*' not in settings.cors_origins,
  allow_methods=['GET', 'POST', 'OPTIONS'],
  allow_headers=['*'],
)


@app.middleware('http')
async def add_correlation_id(request: Request, call_next):
  """Inject correlation ID into request context.

  - Extracts X-Correlation-ID header or generates new UUID
  - Sets correlation ID in context for logging (and recompute jobs)
  - Adds X-Correlation-ID to response headers
  - Records request duration and logs the request
  """
  correlation_id = request.headers.get('X-Correlation-ID', str(uuid4()))
  set_correlation_id(correlation_id)
  request.state.correlation_id = correlation_id

  start_time = time.time()
  response = await call_next(request)
  duration_seconds = time.time() - start_time

  response.headers['X-Correlation-ID'] = correlation_id

  # Skip health and metrics endpoints to reduce noise
  if request.url.path not in ['/health', '/api/health', '/metrics']:
    record_request_duration(
      endpoint=request.url.path,
      method=request.method,
      status=response.status_code,
      duration_seconds=duration_seconds,
    )
    log_request(
      endpoint=request.url.path,
      method=request.method,
      status_code=response.status_code,
      duration_ms=duration_seconds * 1000,
    )

  return response


@app.get('/health')
async def health_root():
  """Health check endpoint at root level (for load balancers)."""
  return {'status': 'healthy'}


@app.get('/api/health')
async def health_api():
  """Health check endpoint under /api prefix."""
  return {'status': 'healthy'}


@app.get('/metrics')
async def metrics_root():
  """Prometheus metrics endpoint (ingestion, prediction and request metrics)."""
  return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.exception_handler(RequestValidationError)
async def custom_validation_exception_handler(request: Request, exc: RequestValidationError):
  """Map body validation failures to 400 with the standard error body."""
  errors = exc.errors()
  if errors:
    first = errors[0]
    location = '.'.join(str(part) for part in first.get('loc', ()) if part != 'body')
    message = f'{location}: {first.get("msg", "invalid value")}' if location else first.get('msg')
  else:
    message = 'Invalid request'

  logger.warning(f'Rejected invalid request: {message}', endpoint=request.url.path)
  return JSONResponse(
    status_code=400,
    content={'detail': error_detail('INVALID_REQUEST', message)},
  )


app.include_router(router, prefix='/api', tags=['api'])
