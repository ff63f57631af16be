"""API router for v1 endpoints."""

from fastapi import APIRouter

from board_engine.api import chat2edit

router = APIRouter()

# Board chat-to-edit routes
router.include_router(chat2edit.router, prefix="/board", tags=["board"])
