from fastapi import APIRouter

from chatline.schemas.chat import HealthResponse
from chatline.utils.project import get_project_version

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Liveness probe. Does not touch the database or the generation provider."""
    return HealthResponse(status="ok", version=get_project_version())
