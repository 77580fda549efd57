"""API v1 router composition."""

from fastapi import APIRouter

from app.api.v1.endpoints import anomalies

api_router: APIRouter = APIRouter()
api_router.include_router(anomalies.router, prefix="/anomalies", tags=["anomalies"])
