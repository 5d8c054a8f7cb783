from fastapi import APIRouter

from app.api.routes import health, postback

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(postback.router, prefix="/api/postback", tags=["postback"])
