from fastapi import APIRouter

from fitsync.api.v1.endpoints import health, strava

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(strava.router)
