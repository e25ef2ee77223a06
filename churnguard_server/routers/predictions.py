"""Predictions API Router.

Serves the current churn prediction of one user, or every stored prediction
of a tenant ranked by risk when no user is given.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from churnguard_server.lib.auth import error_detail, require_api_key, resolve_client
from churnguard_server.lib.database import get_db_session
from churnguard_server.lib.settings import Settings, get_settings
from churnguard_server.lib.structured_logger import StructuredLogger
from churnguard_server.services.prediction_service import PredictionService

router = APIRouter()
logger = StructuredLogger(__name__)


class PredictChurnRequest(BaseModel):
  """Request body for POST /predict-churn."""

  model_config = ConfigDict(populate_by_name=True, extra='ignore')

  api_key: Optional[str] = Field(None, validation_alias=AliasChoices('apiKey', 'api_key'))
  user_id: Optional[str] = Field(
    None, max_length=255, validation_alias=AliasChoices('userId', 'user_id')
  )


def _predict(db: Session, settings: Settings, api_key: Optional[str], user_id: Optional[str]) -> dict:
  client = resolve_client(db, require_api_key(api_key))
  service = PredictionService(db, ttl=settings.prediction_ttl)

  try:
    if user_id:
      result = service.get_or_compute(client.id, user_id)
      return {'prediction': result.prediction.to_dict(), 'cached': result.cached}

    predictions = service.list_predictions(client.id)
    logger.info('Listed predictions', client_id=client.id, count=len(predictions))
    return {'predictions': [prediction.to_dict() for prediction in predictions]}
  except SQLAlchemyError as e:
    db.rollback()
    logger.error(f'Prediction lookup failed: {e}', exc_info=True, client_id=client.id, user_id=user_id)
    raise HTTPException(
      status_code=500,
      detail=error_detail('PERSISTENCE_FAILURE', 'Failed to load prediction'),
    ) from e


@router.post('/predict-churn')
async def predict_churn(
  body: Optional[PredictChurnRequest] = None,
  db: Session = Depends(get_db_session),
  settings: Settings = Depends(get_settings),
):
  """Get the churn prediction of a user, or all predictions of the tenant.

  A prediction younger than the freshness TTL is returned unchanged;
  otherwise it is recomputed from the user's events.

  Returns:
      {"prediction": {...}, "cached": bool} when `userId` is given,
      else {"predictions": [...]} ordered by descending risk score

  Raises:
      400: Missing API key
      401: Unknown API key
      500: Store failure
  """
  body = body or PredictChurnRequest()
  return _predict(db, settings, body.api_key, body.user_id)


@router.get('/predict-churn')
async def get_predict_churn(
  request: Request,
  db: Session = Depends(get_db_session),
  settings: Settings = Depends(get_settings),
):
  """Query-string variant of POST /predict-churn (`apiKey`, `userId`)."""
  params = request.query_params
  return _predict(
    db,
    settings,
    params.get('apiKey') or params.get('api_key'),
    params.get('userId') or params.get('user_id'),
  )
