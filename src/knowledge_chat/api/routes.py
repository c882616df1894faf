"""Main API routes for Knowledge Chat."""

from fastapi import APIRouter

from .chat import router as chat_router

# Main API router
router = APIRouter()

router.include_router(chat_router, prefix="/chat", tags=["chat"])
