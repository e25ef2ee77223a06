# API routers for the collection and prediction endpoints

from fastapi import APIRouter

from .predictions import router as predictions_router
from .tracking import router as tracking_router

router = APIRouter()
router.include_router(tracking_router, tags=['tracking'])
router.include_router(predictions_router, tags=['predictions'])
