"""Public-facing routes (APP_ROLE=public)."""

from fastapi import APIRouter

from changedesk.api.routes import change_requests

router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


router.include_router(change_requests.router)
