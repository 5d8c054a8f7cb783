from fastapi import APIRouter

from app.schemas.postback import HealthStatus

router = APIRouter()


@router.get("/", response_model=HealthStatus)
async def root() -> HealthStatus:
    return HealthStatus(status="online", message="AffTools API service is running")


@router.get("/health", response_model=HealthStatus)
async def health() -> HealthStatus:
    return HealthStatus(status="healthy", message="Service is healthy")
