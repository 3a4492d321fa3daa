from fastapi import APIRouter

from inkwell.api.endpoints.ai import router as ai_router

api_router = APIRouter()
api_router.include_router(ai_router)
